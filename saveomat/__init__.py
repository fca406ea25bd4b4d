"""
Container image archive service.

Pulls a list of container images through the Docker Engine and streams them
back as a single tar archive (the format of "docker save"), without writing
the archive to disk.

Features:
    - Concurrent pulls with fail-fast cancellation
    - Per-registry credentials from an uploaded Docker config.json
    - Streaming archive download
    - Configurable via environment variables

Image Lists:
    1. Query parameters:
       GET /tar?image=busybox&image=alpine:3.19

    2. Uploaded file (one reference per line, "#" starts a comment):
       POST /tar  (multipart: images.txt, optional config.json)
"""

__version__ = "0.1.0"

# Import key components for convenience
from .config import Config
from .auth import (
    Authenticator,
    Credential,
    EMPTY_AUTHENTICATOR,
    EmptyAuthenticator,
    StoreAuthenticator,
    from_reader,
    registry_key_for,
    encode_credential,
    registry_auth_for,
)
from .images import normalize_images
from .fetch import fetch_and_package
from .stream import archive_response
from .chart import ChartRenderer, chart_images

__all__ = [
    "Config",
    "Authenticator",
    "Credential",
    "EMPTY_AUTHENTICATOR",
    "EmptyAuthenticator",
    "StoreAuthenticator",
    "from_reader",
    "registry_key_for",
    "encode_credential",
    "registry_auth_for",
    "normalize_images",
    "fetch_and_package",
    "archive_response",
    "ChartRenderer",
    "chart_images",
]
