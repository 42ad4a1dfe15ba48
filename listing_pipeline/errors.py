"""Exception hierarchy for the listing pipeline."""


class ListingPipelineError(Exception):
    """Base exception for pipeline errors."""

    pass


class MalformedInputError(ListingPipelineError):
    """Raised when a delivery envelope or job description cannot be decoded."""

    pass


class ProviderError(ListingPipelineError):
    """Raised when an external annotation or generative provider call fails."""

    pass


class TranscriptUnavailableError(ProviderError):
    """Raised when the annotation provider returned no result to transcribe."""

    def __init__(self, message: str = "No transcription available from the annotation provider") -> None:
        super().__init__(message)


class GenerationError(ProviderError):
    """Raised when the generative-text provider gives no usable JSON listing."""

    def __init__(self, provider: str, attempts: int, reason: str):
        super().__init__(f"{provider} listing generation failed after {attempts} attempt(s): {reason}")
        self.provider = provider
        self.attempts = attempts
        self.reason = reason


class StorageUnavailableError(ListingPipelineError):
    """Raised inside the record store when the backing database cannot be reached."""

    pass
