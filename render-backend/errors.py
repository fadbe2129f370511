"""Custom exceptions for the render backend.

Render errors carry a machine-readable code; `str(error)` is what ends up
in a failed job record, e.g. ``"INVALID_BUNDLE: storyboard.json is missing"``.
"""


class RenderError(Exception):
    """Base exception for all pipeline errors."""

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.message
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class InvalidBundleError(RenderError):
    """The uploaded archive cannot be rendered (bad manifests, no usable scenes)."""

    code = "INVALID_BUNDLE"
    message = "Invalid project bundle"


class MissingDependencyError(RenderError):
    """The media encoder is not installed on this host."""

    code = "MISSING_DEPENDENCY"
    message = "FFmpeg is not installed on the server"


class EncodingError(RenderError):
    """An ffmpeg invocation returned a failure."""

    code = "ENCODING_FAILED"
    message = "FFmpeg encoding failed"


class ProbeError(RenderError):
    """ffprobe could not determine a media duration. Always recovered by the caller."""

    code = "PROBE_FAILED"
    message = "Could not determine media duration"


# =============================================================================
# Job store errors
# =============================================================================


class JobStoreError(Exception):
    """Base class for job store errors."""


class JobNotFoundError(JobStoreError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobAlreadyExistsError(JobStoreError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job already exists: {job_id}")


class JobStoreUnavailableError(JobStoreError):
    """Neither the database nor the local snapshot could serve the request."""
