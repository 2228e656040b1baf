"""Error hierarchy and error response models."""

from pydantic import BaseModel, Field


class ReelforgeError(Exception):
    """Base error for all reelforge errors."""

    def __init__(self, message: str, component: str = "", details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.component = component
        self.details = details or {}


class InvalidInputError(ReelforgeError):
    """Bad job creation input or a request that makes no sense for the current state."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, component="validation", details=details)


class JobNotFoundError(ReelforgeError):
    """Unknown job or segment."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, component="store", details=details)


class IllegalTransitionError(ReelforgeError):
    """A job or segment state change that the state machine does not allow."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, component="state", details=details)


class DecodeError(ReelforgeError):
    """Source audio could not be decoded."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, component="segmenter", details=details)


class ProviderError(ReelforgeError):
    """Base for errors raised by an external generation or lipsync provider."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        retryable: bool = False,
        details: dict | None = None,
    ):
        super().__init__(message, component=provider or "provider", details=details)
        self.provider = provider
        self.retryable = retryable


class ProviderSubmissionError(ProviderError):
    """Submitting an operation to a provider failed."""


class ProviderFailureError(ProviderError):
    """Provider reported that an operation finished unsuccessfully."""


class ProviderTimeoutError(ProviderError):
    """An operation exceeded its polling budget."""


class IncompleteJobError(ReelforgeError):
    """Stitch requested while some segments have no final output."""

    def __init__(self, message: str, indices: list[int], details: dict | None = None):
        super().__init__(
            message, component="orchestrator", details={"indices": indices, **(details or {})}
        )
        self.indices = indices


class EmptyInputError(ReelforgeError):
    """Stitcher was given no clips."""

    def __init__(self, message: str = "No clips to stitch", details: dict | None = None):
        super().__init__(message, component="stitcher", details=details)


class ClipLoadError(ReelforgeError):
    """A clip could not be loaded for stitching."""

    def __init__(self, message: str, index: int, details: dict | None = None):
        super().__init__(message, component="stitcher", details={"index": index, **(details or {})})
        self.index = index


class RenderingError(ReelforgeError):
    """FFmpeg failed while compositing the output."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, component="rendering", details=details)


class ErrorResponse(BaseModel):
    """Standardized error response for API."""

    error_type: str = Field(..., description="Error category")
    component: str = Field(default="", description="Component that raised the error")
    message: str = Field(..., description="Human-readable error message")
    details: dict = Field(default_factory=dict)
    actionable_guidance: str = Field(default="", description="Suggested user action")
    retry_possible: bool = Field(default=False)

    @classmethod
    def from_exception(
        cls, exc: ReelforgeError, guidance: str = "", retry: bool = False
    ) -> "ErrorResponse":
        return cls(
            error_type=type(exc).__name__,
            component=exc.component,
            message=exc.message,
            details=exc.details,
            actionable_guidance=guidance,
            retry_possible=retry,
        )
