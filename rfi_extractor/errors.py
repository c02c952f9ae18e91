"""
Error taxonomy for the extraction pipeline

Service errors are demoted to per-unit failures inside the Unit Processor.
Storage and planning errors are fatal and propagate to the CLI.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors"""


class TransientServiceError(PipelineError):
    """Network, timeout, rate-limit or 5xx error from the remote service (retryable)"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class ServiceRejectedError(PipelineError):
    """Non-retryable service error (bad request, auth, permission)"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(PipelineError):
    """Response could not be parsed or is missing required top-level fields"""


class StorageError(PipelineError):
    """Checkpoint read/write failure. Fatal to the current run."""


class PlanningError(PipelineError):
    """Invalid configuration or input detected before any work starts"""
