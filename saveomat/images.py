"""
Image list handling for the image archive service.

Turns raw image lists (query parameters, uploaded images.txt files, or chart
renderings) into the ordered list of references to pull.
"""

import logging

logger = logging.getLogger(__name__)


def normalize_images(lines) -> list[str]:
    """
    Clean a raw list of image references.

    Rules:
        - Surrounding spaces are trimmed
        - Empty lines are dropped
        - Lines starting with "#" are comments and dropped
        - Order is preserved, duplicates are kept, references are not validated

    Examples:
        >>> normalize_images([" busybox ", "", "#c", "alpine"])
        ['busybox', 'alpine']
    """
    normalized = []
    for line in lines:
        image = line.strip(" ")
        if not image or image.startswith("#"):
            continue
        normalized.append(image)
    return normalized


def read_image_lines(stream) -> list[str]:
    """
    Read an uploaded image list into lines.

    Args:
        stream: Binary or text file-like object (e.g. a werkzeug FileStorage)

    Returns:
        Lines without their line terminators ("\\n" or "\\r\\n"). Bytes that are
        not valid UTF-8 become U+FFFD, so such a line fails as a reference later.
    """
    data = stream.read()
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")

    lines = [line.removesuffix("\r") for line in data.split("\n")]
    if lines and lines[-1] == "":
        lines.pop()
    logger.debug(f"Read {len(lines)} lines from image list")
    return lines
