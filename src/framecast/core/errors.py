"""Exception hierarchy shared by the scheduler, batch processor and API."""


class FramecastError(Exception):
    """Base class for all framecast errors."""


class ConfigurationError(FramecastError, ValueError):
    """Invalid schedule input or timezone. Raised synchronously, never retried."""


class TransientExecutionError(FramecastError):
    """A collaborator failed while a job or batch item was running."""


class GenerationError(TransientExecutionError):
    """The image-generation provider returned an error or no image."""


class ArtifactStoreError(TransientExecutionError):
    """Downloading or persisting a generated image failed."""


class DeviceSyncError(TransientExecutionError):
    """Pushing an image to a display device failed."""


class BatchStateError(FramecastError):
    """The requested batch transition is not allowed from its current status."""


class NotFoundError(FramecastError, LookupError):
    """The requested record does not exist or belongs to another user."""
