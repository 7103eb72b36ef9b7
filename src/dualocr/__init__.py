# src/dualocr/__init__.py
from .cache import ResultCache
from .config import DualOCRConfig
from .credentials import CredentialResolver
from .events import EventChannel, ImageEvent
from .exceptions import (
    DualOCRError,
    EngineBusy,
    EngineInitError,
    EngineNotReady,
    RecognitionFailure,
    RemoteError,
    ServiceUnavailable,
)
from .gemini_client import GeminiVisionClient
from .models import BatchImage, BatchSummary, Mode, Phase, RefineStatus, ResultEntry
from .orchestrator import DualPathOrchestrator
from .pool import PrimaryRecognizerPool

__version__ = "0.1.0"
