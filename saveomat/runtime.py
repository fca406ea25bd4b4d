"""
Docker Engine image client for the image archive service.

Wraps the low-level docker.APIClient for the two calls the service needs:

    - POST /images/create  (pull, with a pre-encoded X-Registry-Auth header)
    - GET  /images/get     (save several images into one tar archive)

Both calls stream. Pull progress is exposed as an iterator of decoded JSON
messages, and the archive as a file-like ArchiveStream that is never buffered
as a whole.
"""

import logging
import threading

import docker
import requests
from docker.errors import DockerException
from docker.utils import parse_repository_tag

from .config import config
from .errors import PullError, SaveError

logger = logging.getLogger(__name__)

# Interval at which a pull checks for cancellation while blocked on the daemon
CANCEL_POLL_INTERVAL = 0.2


class PullProgress:
    """
    Progress stream of a running pull.

    Iterating yields the daemon's decoded progress messages until the pull has
    finished. An "error" message raises PullError. When the cancel event is set,
    the underlying HTTP response is closed and iteration stops, aborting the pull.
    """

    def __init__(self, image: str, response, messages, cancel: threading.Event | None = None):
        self.image = image
        self._response = response
        self._messages = messages
        self._cancel = cancel
        self._done = threading.Event()
        self._closed = False
        self._lock = threading.Lock()
        if cancel is not None:
            watcher = threading.Thread(
                target=self._close_on_cancel, name=f"pull-cancel-{image}", daemon=True
            )
            watcher.start()

    def _close_on_cancel(self):
        while not self._done.wait(CANCEL_POLL_INTERVAL):
            if self._cancel.is_set():
                logger.debug(f"Aborting pull of '{self.image}'")
                self.close()
                return

    def _cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    def __iter__(self):
        try:
            for message in self._messages:
                if self._cancelled():
                    return
                if isinstance(message, dict) and message.get("error"):
                    detail = message.get("errorDetail") or {}
                    raise PullError(detail.get("message") or message["error"], self.image)
                yield message
        except PullError:
            raise
        except Exception as e:
            # Closing the response from the watcher surfaces as a read error
            if self._cancelled():
                return
            raise PullError(f"pull interrupted: {e}", self.image) from e
        finally:
            self.close()

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._done.set()
        self._response.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class ArchiveStream:
    """
    Read-only stream over a saved image archive.

    Supports read(), chunked iteration, and close(). close() is idempotent and
    releases the daemon connection.
    """

    def __init__(self, response, chunk_size: int | None = None):
        self._response = response
        self._raw = response.raw
        self.chunk_size = chunk_size or config.STREAM_CHUNK_SIZE
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            return self._raw.read()
        return self._raw.read(size)

    def __iter__(self):
        while True:
            chunk = self.read(self.chunk_size)
            if not chunk:
                return
            yield chunk

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._response.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class DockerImageClient:
    """
    Image pull/save client for the Docker Engine API.

    The client is stateless between calls and safe to share across threads; each
    call uses its own streaming HTTP response.
    """

    def __init__(self, api: docker.APIClient):
        self._api = api

    @classmethod
    def from_env(cls, cfg=None) -> "DockerImageClient":
        """
        Create a client from configuration.

        Uses DOCKER_HOST when configured, otherwise the Docker SDK's environment
        defaults (DOCKER_HOST, DOCKER_TLS_VERIFY, DOCKER_CERT_PATH).
        """
        cfg = cfg or config
        if cfg.DOCKER_HOST:
            api = docker.APIClient(base_url=cfg.DOCKER_HOST, timeout=cfg.DOCKER_API_TIMEOUT)
        else:
            api = docker.from_env(timeout=cfg.DOCKER_API_TIMEOUT).api
        logger.info(f"Docker client connected to {api.base_url}")
        return cls(api)

    def pull(self, image: str, registry_auth: str, cancel: threading.Event | None = None) -> PullProgress:
        """
        Start pulling an image.

        Args:
            image: Image reference, e.g. "registry.example.com/ns/name:tag"
            registry_auth: Encoded credential, sent verbatim as X-Registry-Auth
            cancel: Optional event; when set, the pull is aborted

        Returns:
            PullProgress that must be drained for the pull to complete

        Raises:
            PullError: if the daemon rejects the pull
        """
        repository, tag = parse_repository_tag(image)
        params = {"fromImage": repository, "tag": tag or "latest"}
        headers = {"X-Registry-Auth": registry_auth}

        logger.debug(f"Pulling '{image}' (fromImage={repository}, tag={params['tag']})")
        # APIClient.pull(auth_config=...) re-encodes the header; the raw calls send it verbatim
        try:
            response = self._api._post(
                self._api._url("/images/create"),
                params=params,
                headers=headers,
                stream=True,
                timeout=None,
            )
            self._api._raise_for_status(response)
        except (requests.exceptions.RequestException, DockerException) as e:
            raise PullError(str(e), image) from e

        messages = self._api._stream_helper(response, decode=True)
        return PullProgress(image, response, messages, cancel)

    def save(self, images: list[str]) -> ArchiveStream:
        """
        Export images as one tar archive.

        Args:
            images: Image references, in the order they were pulled

        Returns:
            ArchiveStream over the daemon's tar output; the caller must close it

        Raises:
            SaveError: if the daemon cannot produce the archive
        """
        logger.debug(f"Saving {len(images)} images: {images}")
        # Raw call so the response body stays a stream we own and can close
        try:
            response = self._api._get(
                self._api._url("/images/get"),
                params={"names": images},
                stream=True,
                timeout=None,
            )
            self._api._raise_for_status(response)
        except (requests.exceptions.RequestException, DockerException) as e:
            raise SaveError(str(e)) from e
        return ArchiveStream(response)
