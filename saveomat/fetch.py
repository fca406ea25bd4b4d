"""
Fetch orchestration for the image archive service.

Pulls every requested image concurrently and, once all pulls succeeded,
requests one combined archive for the whole set.

Concurrency:
    - One worker thread per image, all sharing one cancellation event
    - The first failing worker records its error and sets the event, which
      aborts in-flight pulls and skips workers that have not started yet
    - The caller's cancel event (request lifetime) is linked into the same scope
    - The save call happens strictly after every pull completed successfully
"""

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait

from .auth import registry_auth_for
from .errors import FetchCancelled

logger = logging.getLogger(__name__)


class FetchGroup:
    """
    Group of pull workers sharing one cancellation scope.

    The first error raised by any worker wins; later errors (usually caused by
    the cancellation itself) are discarded.
    """

    def __init__(self, cancel: threading.Event | None = None):
        self.scope = threading.Event()
        self._parent = cancel
        self._lock = threading.Lock()
        self._error = None
        self._done = threading.Event()
        if cancel is not None:
            linker = threading.Thread(target=self._link_cancel, name="fetch-cancel", daemon=True)
            linker.start()

    def _link_cancel(self):
        while not self._done.wait(0.2):
            if self._parent.is_set():
                logger.info("Request cancelled, aborting pulls")
                self.scope.set()
                return

    def run(self, func, *args):
        try:
            return func(*args)
        except BaseException as e:
            with self._lock:
                if self._error is None:
                    self._error = e
            self.scope.set()
            raise

    @property
    def error(self):
        return self._error

    def close(self):
        self._done.set()


def pull_image(client, authenticator, image: str, scope: threading.Event) -> int:
    """
    Pull one image and drain its progress stream.

    Draining is what lets the daemon finish the pull; the messages themselves
    are only logged at DEBUG level.

    Returns:
        Number of progress messages consumed

    Raises:
        ParseError, CredentialLookupError, EncodingError, PullError
    """
    if scope.is_set():
        logger.debug(f"Skipping pull of '{image}': fetch cancelled")
        return 0

    registry_auth = registry_auth_for(authenticator, image)
    progress = client.pull(image, registry_auth=registry_auth, cancel=scope)

    consumed = 0
    with progress:
        for message in progress:
            consumed += 1
            if isinstance(message, dict) and message.get("status"):
                logger.debug(f"[{image}] {message['status']} {message.get('progress', '')}".rstrip())

    if not scope.is_set():
        logger.info(f"Pulled '{image}'")
    return consumed


def fetch_and_package(client, authenticator, images: list[str], cancel: threading.Event | None = None):
    """
    Pull images concurrently and return one archive containing all of them.

    Args:
        client: Runtime image client offering pull(image, registry_auth, cancel)
            and save(images), e.g. DockerImageClient
        authenticator: Authenticator used to resolve each image's credential
        images: Non-empty, normalized list of image references; duplicates are
            pulled twice and order is kept for the save call
        cancel: Optional event set when the inbound request goes away

    Returns:
        Unconsumed archive stream; the caller must close it

    Raises:
        ParseError, CredentialLookupError, EncodingError, PullError: the first
            error raised by any worker
        SaveError: if the archive cannot be produced
        FetchCancelled: if the request was cancelled before the save call

    Behavior:
        Fail-fast: a single failing image aborts the whole request and no save
        is attempted. The orchestrator imposes no timeout of its own.
    """
    logger.info(f"Fetching {len(images)} images")

    group = FetchGroup(cancel)
    executor = ThreadPoolExecutor(max_workers=len(images), thread_name_prefix="pull")
    try:
        futures = [
            executor.submit(group.run, pull_image, client, authenticator, image, group.scope)
            for image in images
        ]
        # Abandoned workers are not waited for; they observe the scope and exit
        wait(futures, return_when=FIRST_EXCEPTION)

        if group.error is not None:
            logger.warning(f"Fetch aborted: {group.error}")
            raise group.error
    finally:
        group.close()
        executor.shutdown(wait=False, cancel_futures=True)

    if group.scope.is_set() or (cancel is not None and cancel.is_set()):
        raise FetchCancelled("request cancelled before all images were pulled")

    logger.info(f"All {len(images)} images pulled, saving archive")
    return client.save(images)
