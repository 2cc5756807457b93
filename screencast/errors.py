"""Exception types shared by the capture, storage and playback layers."""


class ScreenCastError(Exception):
    """Base class for all application errors."""


class PermissionDeniedError(ScreenCastError):
    """The user (or the OS) refused access to a capture device."""


class DeviceUnavailableError(ScreenCastError):
    """A capture device is missing or could not be opened."""


class InvalidStateError(ScreenCastError):
    """Operation is not allowed in the current recorder/player state."""


class StorageError(ScreenCastError):
    """Object storage rejected or failed an operation."""


class NotFoundError(ScreenCastError):
    """A share id, object or comment does not exist."""


class UploadError(ScreenCastError):
    """The upload pipeline failed; message is safe to show to the user."""
