from typing import Optional


class ImageTaggerError(Exception):
    """Base class for errors raised by the tagging and search core."""


class ProviderError(ImageTaggerError):
    """An external model call failed: HTTP error, timeout or malformed response."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_text: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text


class NotFoundError(ImageTaggerError):
    """A referenced blob, embedding or image is absent."""


class EmptyInputError(ImageTaggerError):
    """Embedding generation was attempted without any usable source text."""


class ValidationError(ImageTaggerError):
    """Malformed caller input."""
