"""
Error kinds raised by the overlay engine.
"""


class OverlayError(Exception):
    """Base class for overlay editing errors."""


class EpubFormatError(OverlayError, ValueError):
    """The archive is not a readable EPUB package. Loading aborts."""


class FragmentNotFoundError(OverlayError, KeyError):
    """No fragment with the given id exists in any overlay."""

    def __init__(self, fragment_id: str):
        super().__init__(fragment_id)
        self.fragment_id = fragment_id

    def __str__(self) -> str:
        return f"Unknown fragment: {self.fragment_id}"


class FragmentReferenceError(OverlayError):
    """A fragment's text reference does not resolve in its chapter markup."""


class AudioResolutionError(OverlayError):
    """An overlay points at an audio resource the package does not contain."""


class AudioDecodeError(OverlayError):
    """Audio bytes could not be decoded for waveform display."""
