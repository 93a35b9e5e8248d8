"""Error kinds raised by the docchat pipeline.

Every error carries the HTTP status the API layer renders it with, so the
router never has to map exception types by hand.
"""


class DocChatError(Exception):
    """Base class for pipeline errors surfaced to the caller."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(DocChatError):
    """Missing or malformed prompt, URL, scope id or owner. Raised before any external call."""

    status_code = 400


class InvalidClassification(InvalidInput):
    """Classifier output decoded fine but declared a kind outside standalone/follow-up."""


class ConversationNotFound(DocChatError):
    status_code = 404


class NoContent(DocChatError):
    """The document fetcher produced nothing usable."""

    status_code = 422


class UpstreamUnavailable(DocChatError):
    """A provider, index or store call failed or timed out."""

    status_code = 502


class MalformedClassifierOutput(ValueError):
    """Classifier output that could not be decoded. Recovered locally, never surfaced."""
