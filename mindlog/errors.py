from __future__ import annotations


class AIError(RuntimeError):
    """Failure raised by an AI provider variant."""


class AIUnreachable(AIError):
    pass


class AITimeout(AIError):
    pass


class AIUnauthorized(AIError):
    pass


class AIRateLimited(AIError):
    pass


class AIServerError(AIError):
    pass


class AIMalformedResponse(AIError):
    pass


ANALYSIS_ERROR_KINDS = ("unreachable", "timeout", "malformed_response", "rate_limited")


class AnalysisError(RuntimeError):
    def __init__(self, kind: str, message: str):
        if kind not in ANALYSIS_ERROR_KINDS:
            raise ValueError(f"Unknown analysis error kind: {kind}")
        super().__init__(message)
        self.kind = kind

    @classmethod
    def from_ai_error(cls, exc: AIError) -> "AnalysisError":
        if isinstance(exc, AITimeout):
            kind = "timeout"
        elif isinstance(exc, AIRateLimited):
            kind = "rate_limited"
        elif isinstance(exc, AIMalformedResponse):
            kind = "malformed_response"
        else:
            # Unauthorized and server errors leave the service unusable for this attempt.
            kind = "unreachable"
        return cls(kind, str(exc))


class NoActivityError(LookupError):
    """Raised when a summary is requested for a period without activity sessions."""


class FrameExtractionError(RuntimeError):
    """ffmpeg could not turn a video capture into still frames."""
