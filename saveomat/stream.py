"""
Archive streaming for the image archive service.

Writes a saved image archive to the HTTP response as it is produced by the
runtime, without buffering the whole archive.
"""

import logging
import threading

from flask import Response

from .config import config

logger = logging.getLogger(__name__)

ARCHIVE_MIMETYPE = "application/x-tar"
ARCHIVE_FILENAME = "images.tar"


class OnceCloser:
    """Closes a stream at most once, from whichever exit path gets there first."""

    def __init__(self, stream):
        self._stream = stream
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
        logger.debug("Closing archive stream")
        self._stream.close()


def iter_archive(archive, closer: OnceCloser, chunk_size: int):
    """Yield the archive in chunks and close it when done or on error."""
    sent = 0
    try:
        while True:
            chunk = archive.read(chunk_size)
            if not chunk:
                break
            sent += len(chunk)
            yield chunk
        logger.info(f"Archive sent: {sent} bytes")
    finally:
        closer.close()


def archive_response(archive, filename: str = ARCHIVE_FILENAME, chunk_size: int | None = None) -> Response:
    """
    Build a streaming response for an image archive.

    Args:
        archive: File-like object with read() and close(), e.g. ArchiveStream
        filename: Suggested download filename
        chunk_size: Bytes per chunk. Default: STREAM_CHUNK_SIZE

    Returns:
        Flask Response streaming the archive as application/x-tar

    Resource Handling:
        The archive is closed exactly once: when the body has been fully sent,
        when reading fails, or when the server closes the response early
        (client disconnect).
    """
    closer = OnceCloser(archive)
    body = iter_archive(archive, closer, chunk_size or config.STREAM_CHUNK_SIZE)

    resp = Response(body, status=200, mimetype=ARCHIVE_MIMETYPE)
    resp.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    resp.call_on_close(closer.close)
    return resp
