# dualocr/ocr_backends/base.py
from abc import ABC, abstractmethod

from ..models import RecognitionResult


class BaseOCREngine(ABC):
    @abstractmethod
    def recognize(self, image: bytes) -> RecognitionResult:
        """Recognize one encoded image; raise on failure."""
        pass
