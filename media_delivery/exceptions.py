"""
Exception hierarchy for media delivery.

URL building raises ``UnknownClient`` / ``UnknownFormat`` straight to the
caller. The request-side errors (``InvalidRequest``, ``AccessDenied``,
``AssetNotFound``) are raised inside the dispatcher and converted into
fallback outcomes; they carry the HTTP status the fallback is served with.
"""


class MediaDeliveryError(Exception):
    """Base class for every error raised by this package."""

    status_code = 500


class DeliveryConfigError(MediaDeliveryError):
    """The delivery configuration is missing or malformed."""


class UnknownClient(MediaDeliveryError):
    def __init__(self, client_id):
        super().__init__(f'Client "{client_id}" not found.')
        self.client_id = client_id


class UnknownFormat(MediaDeliveryError):
    def __init__(self, format_name):
        super().__init__(f'Format "{format_name}" not found.')
        self.format_name = format_name


class InvalidRequest(MediaDeliveryError):
    status_code = 412


class AccessDenied(MediaDeliveryError):
    status_code = 403


class AssetNotFound(MediaDeliveryError):
    status_code = 404


class GenerationFailure(MediaDeliveryError):
    """The generator failed or did not produce the cache file."""

    def __init__(self, message: str, path_cache: str | None = None):
        super().__init__(message)
        self.path_cache = path_cache


class GenerationTimeout(GenerationFailure):
    status_code = 504
