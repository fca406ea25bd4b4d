"""
Pytest fixtures for the image archive service.

Provides an in-memory runtime image client so that fetches and endpoints can be
tested without a Docker daemon.
"""

import io
import tarfile
import threading
import time

import pytest

from saveomat.routes import app


def make_tar_bytes(content: bytes = b"test tar") -> bytes:
    """Build a small tar archive standing in for a saved image set."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        info = tarfile.TarInfo("images")
        info.size = len(content)
        tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


class FakeArchive:
    """Archive stream over in-memory bytes that counts close() calls."""

    def __init__(self, data: bytes):
        self._buf = io.BytesIO(data)
        self.close_calls = 0

    def read(self, size=-1):
        return self._buf.read(size)

    def close(self):
        self.close_calls += 1

    @property
    def closed(self):
        return self.close_calls > 0


class FakeProgress:
    """Pull progress that optionally waits, or blocks until cancelled."""

    def __init__(self, client, image, cancel, delay=0.0, block=False):
        self._client = client
        self.image = image
        self._cancel = cancel
        self._delay = delay
        self._block = block
        self.closed = False

    def __iter__(self):
        if self._block:
            if self._cancel.wait(5):
                self._client.record_cancelled(self.image)
            return
        if self._delay:
            time.sleep(self._delay)
        yield {"status": f"Pulling from {self.image}"}
        yield {"status": "Download complete", "progress": "[==>]"}
        self._client.record_completed(self.image)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FakeImageClient:
    """
    In-memory stand-in for DockerImageClient.

    Args:
        failures: image -> exception raised by pull()
        delays: image -> seconds the pull takes
        blocking: images whose pull blocks until the fetch is cancelled
        archive: bytes returned by save()
    """

    def __init__(self, failures=None, delays=None, blocking=(), archive=None):
        self.failures = failures or {}
        self.delays = delays or {}
        self.blocking = set(blocking)
        self.archive_bytes = archive if archive is not None else make_tar_bytes()
        self.pulls = []
        self.completed = []
        self.cancelled = []
        self.saves = []
        self.archives = []
        self._lock = threading.Lock()

    def pull(self, image, registry_auth, cancel=None):
        with self._lock:
            self.pulls.append((image, registry_auth))
        if image in self.failures:
            raise self.failures[image]
        return FakeProgress(
            self,
            image,
            cancel or threading.Event(),
            delay=self.delays.get(image, 0.0),
            block=image in self.blocking,
        )

    def save(self, images):
        self.saves.append(list(images))
        archive = FakeArchive(self.archive_bytes)
        self.archives.append(archive)
        return archive

    def record_completed(self, image):
        with self._lock:
            self.completed.append(image)

    def record_cancelled(self, image):
        with self._lock:
            self.cancelled.append(image)

    @property
    def pulled_images(self):
        return [image for image, _ in self.pulls]


@pytest.fixture
def http_client():
    """Flask test client whose requests use the fake runtime client set on app.config."""
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client
    app.config.pop("IMAGE_CLIENT", None)

