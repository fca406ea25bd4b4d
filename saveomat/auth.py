"""
Registry authentication module for the image archive service.

Resolves the credential to send along with a pull for a given image reference
and encodes it in the form the Docker Engine expects in the X-Registry-Auth
header.

Credential sources:
    1. StoreAuthenticator - backed by an uploaded Docker client config.json
    2. EmptyAuthenticator - anonymous pulls, shared as EMPTY_AUTHENTICATOR

Lookup keys:
    Credentials are indexed by registry domain. Docker Hub is the exception:
    its credentials are stored under "https://index.docker.io/v1/" for
    historical reasons, so both of its domain aliases are rewritten to that key.
"""

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass

from .errors import (
    CredentialDocumentError,
    CredentialLookupError,
    EncodingError,
    ParseError,
    SaveomatError,
)

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "docker.io"
LEGACY_DEFAULT_DOMAIN = "index.docker.io"
DEFAULT_AUTH_KEY = "https://index.docker.io/v1/"

# Domains whose credentials live under the legacy Docker Hub key
LEGACY_AUTH_KEYS = {
    DEFAULT_DOMAIN: DEFAULT_AUTH_KEY,
    LEGACY_DEFAULT_DOMAIN: DEFAULT_AUTH_KEY,
}

NAME_TOTAL_LENGTH_MAX = 255

# Distribution reference grammar
_ALPHA_NUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]+)"
_PATH_COMPONENT = rf"{_ALPHA_NUMERIC}(?:{_SEPARATOR}{_ALPHA_NUMERIC})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN_NAME = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*"
_IPV6 = r"\[(?:[a-fA-F0-9:]+)\]"
_DOMAIN = rf"(?:{_DOMAIN_NAME}|{_IPV6})(?::[0-9]+)?"
_TAG = r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"
_NAME = rf"(?:{_DOMAIN}/)?{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*"

# Matched with fullmatch() so a trailing newline is not accepted
REFERENCE_RE = re.compile(rf"(?P<name>{_NAME})(?::(?P<tag>{_TAG}))?(?:@(?P<digest>{_DIGEST}))?")
IMAGE_ID_RE = re.compile(r"[a-f0-9]{64}")

# Lone surrogates, which have no UTF-8 encoding
_SURROGATES_RE = re.compile(r"[\ud800-\udfff]")

# Characters the Docker CLI's JSON encoder escapes
_JSON_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


@dataclass(frozen=True)
class Credential:
    """
    Registry credential as understood by the Docker Engine API.

    Either the password-based fields (username, password, auth) or one of the
    token fields is populated. The all-empty value means anonymous access.
    """

    username: str = ""
    password: str = ""
    auth: str = ""
    identitytoken: str = ""
    registrytoken: str = ""

    def to_dict(self) -> dict:
        """Return the non-empty fields in Engine API order."""
        fields = (
            ("username", self.username),
            ("password", self.password),
            ("auth", self.auth),
            ("identitytoken", self.identitytoken),
            ("registrytoken", self.registrytoken),
        )
        return {key: value for key, value in fields if value}

    @classmethod
    def from_dict(cls, data: dict) -> "Credential":
        return cls(
            username=data.get("username", ""),
            password=data.get("password", ""),
            auth=data.get("auth", ""),
            identitytoken=data.get("identitytoken", ""),
            registrytoken=data.get("registrytoken", ""),
        )


class Authenticator:
    """Resolves a registry key to the credential used for that registry."""

    def get_credential(self, registry_key: str) -> Credential:
        raise NotImplementedError


class EmptyAuthenticator(Authenticator):
    """Authenticator for anonymous pulls; every lookup yields an empty credential."""

    def get_credential(self, registry_key: str) -> Credential:
        return Credential()

    def __repr__(self):
        return "EmptyAuthenticator()"


class StoreAuthenticator(Authenticator):
    """
    Authenticator backed by the "auths" section of a Docker client config file.

    Lookup order:
        1. Exact match on the stored server address
        2. First stored address whose hostname equals the key
           (e.g. "https://test.io/v1/" matches "test.io")
        3. Empty credential
    """

    def __init__(self, auths: dict[str, Credential]):
        self._auths = dict(auths)

    def get_credential(self, registry_key: str) -> Credential:
        credential = self._auths.get(registry_key)
        if credential is not None:
            return credential

        for address, credential in self._auths.items():
            if _hostname(address) == registry_key:
                return credential

        logger.debug(f"No credential stored for registry '{registry_key}'")
        return Credential()

    def __repr__(self):
        # Never log the credentials themselves
        return f"StoreAuthenticator(registries={sorted(self._auths)})"


EMPTY_AUTHENTICATOR = EmptyAuthenticator()


def _hostname(address: str) -> str:
    """Reduce a stored server address to its bare hostname."""
    for prefix in ("http://", "https://"):
        if address.startswith(prefix):
            address = address[len(prefix):]
            break
    return address.split("/", 1)[0]


def _decode_auth(auth: str) -> tuple[str, str]:
    """Decode a base64 "user:password" pair from a config file entry."""
    try:
        raw = base64.b64decode(auth, validate=True)
    except binascii.Error as e:
        raise CredentialDocumentError(f"invalid auth configuration file: {e}")
    # Invalid UTF-8 becomes U+FFFD, as it would once re-encoded for the daemon
    decoded = raw.decode("utf-8", errors="replace")

    username, sep, password = decoded.partition(":")
    if not sep:
        raise CredentialDocumentError("invalid auth configuration file")
    return username, password.strip("\x00")


def _field(entry: dict, name: str, address: str) -> str:
    value = entry.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise CredentialDocumentError(f"auth entry for '{address}': '{name}' must be a string")
    return value


def from_reader(source) -> StoreAuthenticator:
    """
    Build a StoreAuthenticator from a Docker client config document.

    Args:
        source: bytes, str, or a binary/text file-like object with the JSON document

    Returns:
        StoreAuthenticator over the document's "auths" entries

    Raises:
        CredentialDocumentError: if the document is not valid JSON, is not a JSON
            object, or contains an auth entry that cannot be decoded

    Document Format:
        {
            "auths": {
                "https://index.docker.io/v1/": {"auth": "<base64 user:password>"},
                "registry.example.com": {"identitytoken": "..."}
            }
        }
    """
    if isinstance(source, (bytes, str)):
        raw = source
    else:
        raw = source.read()
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CredentialDocumentError(f"credential document is not UTF-8: {e}")

    try:
        document = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CredentialDocumentError(f"credential document is not valid JSON: {e}")

    if not isinstance(document, dict):
        raise CredentialDocumentError("credential document must be a JSON object")

    entries = document.get("auths")
    if entries is None:
        entries = {}
    if not isinstance(entries, dict):
        raise CredentialDocumentError('"auths" must be a JSON object')

    auths = {}
    for address, entry in entries.items():
        if not isinstance(entry, dict):
            raise CredentialDocumentError(f"auth entry for '{address}' must be a JSON object")
        username = _field(entry, "username", address)
        password = _field(entry, "password", address)
        auth = _field(entry, "auth", address)
        if auth:
            username, password = _decode_auth(auth)
        auths[address] = Credential(
            username=username,
            password=password,
            identitytoken=_field(entry, "identitytoken", address),
            registrytoken=_field(entry, "registrytoken", address),
        )

    logger.info(f"Loaded credentials for {len(auths)} registries")
    return StoreAuthenticator(auths)


def split_domain(image: str) -> tuple[str, str]:
    """
    Split an image reference into (domain, remainder) using Docker's defaulting rules.

    The first path component is a domain only if it contains "." or ":", is
    "localhost", or contains uppercase letters. Otherwise the image lives on
    Docker Hub.

    Examples:
        >>> split_domain("busybox")
        ('docker.io', 'busybox')
        >>> split_domain("localhost:5000/app:1.0")
        ('localhost:5000', 'app:1.0')
    """
    head, sep, remainder = image.partition("/")
    if not sep or (
        "." not in head and ":" not in head and head != "localhost" and head.lower() == head
    ):
        return DEFAULT_DOMAIN, image
    if head == LEGACY_DEFAULT_DOMAIN:
        head = DEFAULT_DOMAIN
    return head, remainder


def parse_domain(image: str) -> str:
    """
    Parse an image reference and return its registry domain.

    Raises:
        ParseError: if the reference is not a valid normalized image name
    """
    if IMAGE_ID_RE.fullmatch(image):
        raise ParseError(
            "invalid repository name, cannot specify 64-byte hexadecimal strings", image
        )

    domain, remainder = split_domain(image)
    repository = remainder.split("@", 1)[0].split(":", 1)[0]
    if repository.lower() != repository:
        raise ParseError("invalid reference format: repository name must be lowercase", image)

    match = REFERENCE_RE.fullmatch(f"{domain}/{remainder}")
    if not match:
        raise ParseError("invalid reference format", image)

    # Single-component Docker Hub names are measured with "library/" added
    name = match.group("name")
    path = name[len(domain) + 1:]
    if domain == DEFAULT_DOMAIN and "/" not in path:
        name = f"{DEFAULT_DOMAIN}/library/{path}"
    if len(name) > NAME_TOTAL_LENGTH_MAX:
        raise ParseError(
            f"repository name must not be more than {NAME_TOTAL_LENGTH_MAX} characters", image
        )
    return domain


def registry_key_for(image: str) -> str:
    """
    Return the key under which credentials for an image's registry are stored.

    Examples:
        >>> registry_key_for("busybox")
        'https://index.docker.io/v1/'
        >>> registry_key_for("test.io/busybox")
        'test.io'
    """
    domain = parse_domain(image)
    return LEGACY_AUTH_KEYS.get(domain, domain)


def encode_credential(credential: Credential) -> str:
    """
    Encode a credential for the X-Registry-Auth header.

    Format:
        URL-safe base64 (padding kept) of compact JSON with empty fields omitted,
        serialized the way the Docker CLI does it: UTF-8 output with "<", ">",
        "&", U+2028 and U+2029 escaped. Lone surrogates are replaced with U+FFFD.
        An empty credential encodes to "e30=" ("{}").

    Raises:
        EncodingError: if the credential cannot be serialized
    """
    try:
        payload = json.dumps(credential.to_dict(), separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise EncodingError(f"failed to serialize credential: {e}")
    payload = _SURROGATES_RE.sub("\ufffd", payload)
    for char, escaped in _JSON_HTML_ESCAPES.items():
        payload = payload.replace(char, escaped)
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_credential(encoded: str) -> Credential:
    """Inverse of encode_credential()."""
    return Credential.from_dict(json.loads(base64.urlsafe_b64decode(encoded)))


def registry_auth_for(authenticator: Authenticator, image: str) -> str:
    """
    Resolve and encode the credential to pull an image with.

    Raises:
        ParseError: if the image reference is malformed
        CredentialLookupError: if the authenticator fails
        EncodingError: if the credential cannot be serialized
    """
    key = registry_key_for(image)
    try:
        credential = authenticator.get_credential(key)
    except SaveomatError:
        raise
    except Exception as e:
        raise CredentialLookupError(f"credential lookup for '{key}' failed: {e}", image) from e
    logger.debug(f"Resolved credential for '{image}' using key '{key}'")
    return encode_credential(credential)
