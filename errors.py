"""Error taxonomy for the safety pipeline."""

from enum import Enum
from typing import List, Optional


class PipelineStage(str, Enum):
    EXTRACTION = "extraction"
    CLASSIFICATION = "classification"
    ANALYSIS = "analysis"
    SCORING = "scoring"


class FailureReason(str, Enum):
    EXTRACTION = "extraction"
    ANALYSIS = "analysis"
    INFERENCE_EXHAUSTED = "inference-exhausted"


class SafetyPipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class TransientInferenceError(SafetyPipelineError):
    """A single attempt failed: network, timeout, non-2xx or bad envelope."""


class MalformedCompletionError(SafetyPipelineError):
    """The completion text did not sanitize into a JSON object."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class InferenceError(SafetyPipelineError):
    """Every attempt failed; `cause` is the error of the last attempt."""

    def __init__(self, cause: Exception, attempts: int):
        super().__init__(f"Inference failed after {attempts} attempts: {cause}")
        self.cause = cause
        self.attempts = attempts


class PipelineAbortError(SafetyPipelineError):
    """A fatal stage could not produce a value. No SafetyResult exists."""

    def __init__(self, stage: PipelineStage, cause: Exception, states: Optional[List[str]] = None):
        super().__init__(f"Pipeline aborted during {stage.value}: {cause}")
        self.stage = stage
        self.cause = cause
        self.states = list(states or [])

    @property
    def reason(self) -> FailureReason:
        if self.stage == PipelineStage.EXTRACTION:
            return FailureReason.EXTRACTION
        if self.stage == PipelineStage.ANALYSIS:
            return FailureReason.ANALYSIS
        return FailureReason.INFERENCE_EXHAUSTED
