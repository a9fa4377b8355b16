"""
Error taxonomy for the library sync tool
"""


class DastanError(Exception):
    """Base class for all errors raised by this package"""


class ConfigurationError(DastanError):
    """Invalid sync configuration supplied by the user"""


class SyncError(DastanError):
    """Base class for storage provider failures"""


class TransientNetworkError(SyncError):
    """Network failure or timeout; the next scheduled cycle retries"""


class UnauthorizedError(SyncError):
    """The private store rejected the credential (expired or revoked)"""


class SnapshotFormatError(SyncError):
    """The remote snapshot could not be decoded into a library"""


class ExtractionError(DastanError):
    """Document extraction or chapter splitting failed"""


class GenerationError(DastanError):
    """Audio synthesis failed (quota, invalid voice or service failure)"""


class GenerationInProgressError(GenerationError):
    """Another generation is already running; the request was rejected"""
