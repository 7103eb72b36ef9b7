# dualocr/exceptions.py
class DualOCRError(Exception):
    """Base exception for the dualocr library."""
    pass


class EngineNotReady(DualOCRError):
    """Raised when the recognizer pool is used before configure()."""
    pass


class EngineBusy(DualOCRError):
    """Raised when the pool is reconfigured while jobs are still in flight."""
    pass


class EngineInitError(DualOCRError):
    """Raised when the recognizer pool cannot load its workers."""
    pass


class RecognitionFailure(DualOCRError):
    """Raised when a single image fails on the primary path."""
    pass


class ServiceUnavailable(DualOCRError):
    """Raised when the remote recognizer has no credential configured."""
    pass


class RemoteError(DualOCRError):
    """Raised when a call to the remote recognizer fails."""
    pass
