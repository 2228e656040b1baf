"""Provider poll payloads and the normalized result shape."""

from enum import StrEnum

from pydantic import BaseModel, Field, model_validator


class NormalizedResult(BaseModel):
    """Provider-independent view of one poll."""

    terminal: bool = False
    success: bool = False
    artifact: str | None = None
    error: str | None = None

    @model_validator(mode="after")
    def validate_shape(self) -> "NormalizedResult":
        if self.success and not self.terminal:
            raise ValueError("A successful result must be terminal")
        if self.success and not self.artifact:
            raise ValueError("A successful result must carry an artifact")
        return self

    @classmethod
    def pending(cls, error: str | None = None) -> "NormalizedResult":
        return cls(terminal=False, success=False, error=error)

    @classmethod
    def succeeded(cls, artifact: str) -> "NormalizedResult":
        return cls(terminal=True, success=True, artifact=artifact)

    @classmethod
    def failed(cls, error: str) -> "NormalizedResult":
        return cls(terminal=True, success=False, error=error)


class GenerationPoll(BaseModel):
    """Raw generation-provider status: a done flag plus payload."""

    done: bool = False
    error: str | None = None
    artifact_uri: str | None = None
    inline_artifact: bytes | None = Field(default=None, repr=False)
    content_type: str = "video/mp4"


class LipsyncStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REJECTED = "REJECTED"

    @property
    def is_failure(self) -> bool:
        return self in (LipsyncStatus.FAILED, LipsyncStatus.REJECTED)


class LipsyncPoll(BaseModel):
    """Raw lipsync-provider status."""

    status: LipsyncStatus = LipsyncStatus.PROCESSING
    error: str | None = None
    output_url: str | None = None
