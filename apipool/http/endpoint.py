"""Endpoint URI parsing."""

from apipool.core.errors import MalformedEndpointError
from apipool.http.models import Endpoint, Transport


_SCHEMES: dict[str, Transport] = {
    "https://": Transport.TLS,
    "http://": Transport.PLAIN,
}


def parse_endpoint(uri: str) -> Endpoint:
    """Parse ``scheme://host[:port]`` into an :class:`Endpoint`.

    Only ``http`` and ``https`` are recognized. Without an explicit port the
    scheme default is used (80 and 443).

    Raises:
        MalformedEndpointError: On an unknown scheme, an empty or non-ASCII
            host, or a port that is not an integer in 1..65535.
    """
    for prefix, transport in _SCHEMES.items():
        if uri.startswith(prefix):
            rest = uri[len(prefix) :]
            break
    else:
        raise MalformedEndpointError(f"Unsupported endpoint scheme: {uri!r}", uri=uri)

    segments = rest.split(":")
    if len(segments) == 1:
        host, port = segments[0], transport.default_port
    elif len(segments) == 2:
        host, raw_port = segments
        if not (raw_port.isascii() and raw_port.isdigit()):
            raise MalformedEndpointError(f"Invalid endpoint port: {uri!r}", uri=uri)
        port = int(raw_port)
    else:
        raise MalformedEndpointError(f"Malformed endpoint: {uri!r}", uri=uri)

    if not host:
        raise MalformedEndpointError(f"Missing endpoint host: {uri!r}", uri=uri)
    if not host.isascii():
        raise MalformedEndpointError(f"Non-ASCII endpoint host: {uri!r}", uri=uri)
    if not 1 <= port <= 65535:
        raise MalformedEndpointError(f"Endpoint port out of range: {uri!r}", uri=uri)

    return Endpoint(transport=transport, host=host, port=port)
