"""Data models for reelforge."""

from reelforge.models.audio import AudioSegment, SegmentBoundary, SplitResult
from reelforge.models.errors import (
    ClipLoadError,
    DecodeError,
    EmptyInputError,
    ErrorResponse,
    IllegalTransitionError,
    IncompleteJobError,
    InvalidInputError,
    JobNotFoundError,
    ProviderError,
    ProviderFailureError,
    ProviderSubmissionError,
    ProviderTimeoutError,
    ReelforgeError,
    RenderingError,
)
from reelforge.models.job import Job, JobSnapshot, JobStatus
from reelforge.models.preferences import AudioDescriptor, JobOptions, StyleMetadata
from reelforge.models.provider import GenerationPoll, LipsyncPoll, LipsyncStatus, NormalizedResult
from reelforge.models.segment import GenerationState, LipsyncState, Segment
from reelforge.models.stitch import StitchEntry, StitchPlan, StitchProgress, StitchResult

__all__ = [
    "AudioDescriptor",
    "AudioSegment",
    "ClipLoadError",
    "DecodeError",
    "EmptyInputError",
    "ErrorResponse",
    "GenerationPoll",
    "GenerationState",
    "IllegalTransitionError",
    "IncompleteJobError",
    "InvalidInputError",
    "Job",
    "JobNotFoundError",
    "JobOptions",
    "JobSnapshot",
    "JobStatus",
    "LipsyncPoll",
    "LipsyncState",
    "LipsyncStatus",
    "NormalizedResult",
    "ProviderError",
    "ProviderFailureError",
    "ProviderSubmissionError",
    "ProviderTimeoutError",
    "ReelforgeError",
    "RenderingError",
    "Segment",
    "SegmentBoundary",
    "SplitResult",
    "StitchEntry",
    "StitchPlan",
    "StitchProgress",
    "StitchResult",
    "StyleMetadata",
]
