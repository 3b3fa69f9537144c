"""Tests for the streaming multipart encoder."""

import string
from pathlib import Path

import pytest

from apipool.core.errors import FileReadError
from apipool.http.models import Disposition, FieldPart, FilePart, InlinePart
from apipool.http.multipart import (
    MultipartStreamEncoder,
    closing_delimiter,
    encode_disposition,
    generate_boundary,
    part_delimiter,
)


class RecordingConnection:
    """Collects ``stream_chunk`` calls instead of writing to a socket."""

    def __init__(self) -> None:
        self.chunks: list[tuple[bytes, bool]] = []

    async def stream_chunk(self, handle: object, data: bytes, *, is_final: bool) -> None:
        self.chunks.append((data, is_final))


class FakeHandle:
    path = "/upload"


@pytest.mark.unit
def test_generate_boundary_is_random_and_token_safe() -> None:
    allowed = set(string.ascii_letters + string.digits + "-_")

    first, second = generate_boundary(), generate_boundary()

    assert first != second
    assert len(first) == 64
    assert set(first) <= allowed


@pytest.mark.unit
def test_encode_disposition_is_not_escaped() -> None:
    assert encode_disposition(Disposition("form-data", [("name", "f")])) == (
        'form-data; name="f"'
    )
    assert encode_disposition(
        Disposition("form-data", [("name", "file"), ("filename", 'a"b.txt')])
    ) == 'form-data; name="file"; filename="a"b.txt"'
    assert encode_disposition(Disposition("inline")) == "inline"


@pytest.mark.unit
def test_part_delimiter_and_closing_delimiter() -> None:
    headers = [("content-disposition", 'form-data; name="f"'), ("x-a", "1")]

    assert part_delimiter("B", headers) == (
        b'\r\n--B\r\ncontent-disposition: form-data; name="f"\r\nx-a: 1\r\n\r\n'
    )
    assert closing_delimiter("B") == b"\r\n--B--\r\n"


@pytest.mark.unit
def test_content_type_carries_boundary() -> None:
    encoder = MultipartStreamEncoder(boundary="abc")

    assert encoder.content_type == "multipart/form-data;boundary=abc"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_encode_field_part() -> None:
    encoder = MultipartStreamEncoder(boundary="B")

    chunk = await encoder.encode_part(FieldPart("f", b"v"))

    assert chunk == b'\r\n--B\r\ncontent-disposition: form-data; name="f"\r\n\r\nv'


@pytest.mark.unit
@pytest.mark.asyncio
async def test_encode_inline_part_with_extra_headers() -> None:
    encoder = MultipartStreamEncoder(boundary="B")
    part = InlinePart(
        name="doc",
        payload=b"{}",
        disposition=Disposition("form-data", [("name", "doc"), ("filename", "d.json")]),
        headers=[("content-type", "application/json")],
    )

    chunk = await encoder.encode_part(part)

    assert chunk == (
        b"\r\n--B\r\n"
        b'content-disposition: form-data; name="doc"; filename="d.json"\r\n'
        b"content-type: application/json\r\n"
        b"\r\n{}"
    )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_encode_file_part_reads_whole_file(tmp_path: Path) -> None:
    path = tmp_path / "report.csv"
    path.write_bytes(b"a,b\n1,2\n")
    encoder = MultipartStreamEncoder(boundary="B")
    part = FilePart(
        path=path,
        disposition=Disposition("form-data", [("name", "report")]),
    )

    chunk = await encoder.encode_part(part)

    assert chunk.endswith(b'name="report"\r\n\r\na,b\n1,2\n')


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_file_raises_file_read_error(tmp_path: Path) -> None:
    missing = tmp_path / "missing.bin"
    encoder = MultipartStreamEncoder()

    with pytest.raises(FileReadError) as exc_info:
        await encoder.encode_part(
            FilePart(path=missing, disposition=Disposition("form-data"))
        )

    assert exc_info.value.path == missing
    assert isinstance(exc_info.value.__cause__, OSError)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stream_writes_one_chunk_per_part_then_final_delimiter() -> None:
    encoder = MultipartStreamEncoder(boundary="B")
    connection = RecordingConnection()

    await encoder.stream(
        connection,  # type: ignore[arg-type]
        FakeHandle(),  # type: ignore[arg-type]
        [FieldPart("a", b"1"), FieldPart("b", b"2")],
    )

    assert [is_final for _, is_final in connection.chunks] == [False, False, True]
    assert connection.chunks[0][0].endswith(b'name="a"\r\n\r\n1')
    assert connection.chunks[1][0].endswith(b'name="b"\r\n\r\n2')
    assert connection.chunks[2][0] == b"\r\n--B--\r\n"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stream_without_parts_sends_only_closing_delimiter() -> None:
    encoder = MultipartStreamEncoder(boundary="B")
    connection = RecordingConnection()

    await encoder.stream(connection, FakeHandle(), [])  # type: ignore[arg-type]

    assert connection.chunks == [(b"\r\n--B--\r\n", True)]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stream_mixed_parts_in_order(tmp_path: Path) -> None:
    upload = tmp_path / "a.txt"
    upload.write_bytes(b"file A")
    encoder = MultipartStreamEncoder(boundary="B")
    connection = RecordingConnection()

    await encoder.stream(
        connection,  # type: ignore[arg-type]
        FakeHandle(),  # type: ignore[arg-type]
        [
            FilePart(
                path=upload,
                disposition=Disposition(
                    "form-data", [("name", "fileA"), ("filename", "a.txt")]
                ),
            ),
            FieldPart("k", b"v"),
            InlinePart(
                name="n",
                payload=b"bytes",
                disposition=Disposition("form-data", [("name", "n")]),
                headers=[("content-type", "application/octet-stream")],
            ),
        ],
    )

    assert [is_final for _, is_final in connection.chunks] == [False, False, False, True]
    assert connection.chunks[0][0] == (
        b"\r\n--B\r\n"
        b'content-disposition: form-data; name="fileA"; filename="a.txt"\r\n'
        b"\r\nfile A"
    )
    assert connection.chunks[1][0] == (
        b'\r\n--B\r\ncontent-disposition: form-data; name="k"\r\n\r\nv'
    )
    assert connection.chunks[2][0] == (
        b"\r\n--B\r\n"
        b'content-disposition: form-data; name="n"\r\n'
        b"content-type: application/octet-stream\r\n"
        b"\r\nbytes"
    )
    assert connection.chunks[3][0] == b"\r\n--B--\r\n"
