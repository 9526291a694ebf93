"""
Zip export of processed image/caption pairs.
"""

import zipfile
from typing import Iterator, Sequence

from .errors import invalid_input
from .file_manager import ProcessedResult, caption_filename

ARCHIVE_NAME = "lora_dataset.zip"


class _StreamBuffer:
    """Write-only, non-seekable sink; zipfile falls back to streaming mode for it."""

    def __init__(self):
        self._chunks = []

    def write(self, data) -> int:
        self._chunks.append(bytes(data))
        return len(data)

    def flush(self):
        pass

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks = []
        return data


def _iter_archive(results: Sequence[ProcessedResult]) -> Iterator[bytes]:
    buffer = _StreamBuffer()
    with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        for result in results:
            archive.writestr(result.filename, result.image_bytes)
            archive.writestr(caption_filename(result.filename), result.caption)
            chunk = buffer.drain()
            if chunk:
                yield chunk
    tail = buffer.drain()
    if tail:
        yield tail


def export_archive(results: Sequence[ProcessedResult]) -> Iterator[bytes]:
    """Return a byte stream of the zip archive.

    Raises before streaming starts when there is nothing to export.
    """
    if not results:
        raise invalid_input(
            "No processed images available",
            "The processed results store is empty",
            "Process your uploaded images before downloading.",
        )
    return _iter_archive(list(results))


def write_archive(results: Sequence[ProcessedResult], path: str) -> int:
    """Write the archive to `path`; returns the number of bytes written."""
    written = 0
    stream = export_archive(results)
    with open(path, "wb") as f:
        for chunk in stream:
            f.write(chunk)
            written += len(chunk)
    return written
