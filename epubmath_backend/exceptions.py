"""
Custom exceptions for the EPUB MathML converter.

Archive-level errors are fatal for a run; render errors are contained to the
single math node that caused them.
"""


class EpubMathError(Exception):
    """Base exception for all converter errors."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def default_message(self) -> str:
        return "An unknown EPUB conversion error occurred."


class UnsafePathError(EpubMathError):
    """Raised when an archive entry would resolve outside the extraction root."""

    @property
    def default_message(self) -> str:
        return "Unsafe archive entry path."


class ExtractionError(EpubMathError):
    """Raised when the input container cannot be read or unpacked."""

    @property
    def default_message(self) -> str:
        return "Failed to extract EPUB."


class MissingMarkerError(EpubMathError):
    """Raised when the root-level mimetype entry is missing before repacking."""

    @property
    def default_message(self) -> str:
        return "EPUB is missing required mimetype file."


class RenderFailure(EpubMathError):
    """Raised when a renderer fails on a single math node."""

    @property
    def default_message(self) -> str:
        return "Math rendering failed."


class MalformedRenderOutput(RenderFailure):
    """Raised when a renderer returns output of the wrong shape."""

    @property
    def default_message(self) -> str:
        return "Renderer returned malformed output."


class RendererUnavailable(EpubMathError):
    """Raised when the rendering engine itself cannot start; fatal for the run."""

    @property
    def default_message(self) -> str:
        return "Math renderer could not be started."
