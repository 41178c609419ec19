"""Exception taxonomy for the call processing pipeline."""


class PipelineError(Exception):
    """Base class for errors that abort a processing run."""


class AudioUnreachable(PipelineError):
    pass


class PayloadTooLarge(PipelineError):
    def __init__(self, size_mb, max_mb):
        super().__init__(f"Audio file too large: {size_mb}MB (max {max_mb}MB)")
        self.size_mb = size_mb
        self.max_mb = max_mb


class TranscriptionFailed(PipelineError):
    pass


class OpenAIError(Exception):
    """HTTP or network failure talking to the hosted model API.

    status_code is None for network-level errors (treated as transient).
    """

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def retryable(self):
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


class InvalidTransition(Exception):
    pass
