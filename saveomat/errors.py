"""
Error types for the image archive service.

Every failure raised by the core carries the stage that produced it. The HTTP
layer turns the stage (and for runtime errors, the message text) into a status
code with http_status_for().
"""


class SaveomatError(Exception):
    """Base class for all errors raised while fetching and packaging images."""

    stage = "internal"
    status = 500

    def __init__(self, message: str, image: str | None = None):
        super().__init__(message)
        self.message = message
        self.image = image

    def __str__(self):
        if self.image:
            return f"{self.image}: {self.message}"
        return self.message


class ParseError(SaveomatError):
    """An image reference could not be parsed into registry/repository form."""

    stage = "parse"
    status = 400


class CredentialDocumentError(SaveomatError):
    """The uploaded credential document is not valid JSON or has the wrong shape."""

    stage = "credentials"
    status = 400


class CredentialLookupError(SaveomatError):
    """An authenticator failed to resolve a credential."""

    stage = "lookup"


class EncodingError(SaveomatError):
    """A credential could not be serialized for the runtime API."""

    stage = "encode"


class PullError(SaveomatError):
    """The container runtime rejected or could not complete a pull."""

    stage = "pull"


class SaveError(SaveomatError):
    """The container runtime could not assemble the image archive."""

    stage = "save"


class FetchCancelled(SaveomatError):
    """The request was cancelled before all pulls completed."""

    stage = "cancel"
    status = 503


class ChartRenderError(SaveomatError):
    """The chart renderer failed to produce a manifest or its image list."""

    stage = "chart"


# Checked in order, first match wins
_RUNTIME_MESSAGE_STATUS = (
    ("forbidden", 403),
    ("not found", 404),
    ("unauthorized", 401),
    ("unauthorised", 401),
    ("service unavailable", 503),
    ("bad request", 400),
    ("bad gateway", 502),
    ("timeout", 408),
)


def http_status_for(error: SaveomatError) -> int:
    """
    Map an error to the HTTP status the caller should see.

    Pull and save errors are classified by the runtime's message text, since the
    Docker Engine reports registry failures as free-form strings. All other
    errors use the status of their class.

    Examples:
        >>> http_status_for(PullError("manifest for foo:bar not found"))
        404
        >>> http_status_for(ParseError("invalid reference format"))
        400
    """
    if isinstance(error, (PullError, SaveError)):
        text = error.message.lower()
        for needle, status in _RUNTIME_MESSAGE_STATUS:
            if needle in text:
                return status
    return error.status
