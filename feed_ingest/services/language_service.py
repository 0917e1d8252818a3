from __future__ import annotations

from typing import Optional, Protocol

from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException

from feed_ingest.core.config import settings

# langdetect is probabilistic; a fixed seed keeps re-runs stable.
DetectorFactory.seed = 0


class LanguageDetector(Protocol):
    def detect(self, text: str) -> Optional[str]:
        ...


class LangDetectLanguageDetector:
    """
    Statistical language detection. Returns an ISO 639-1 code, or None when
    the text carries no usable signal or the best guess is below
    ``min_probability``.
    """

    def __init__(self, *, min_probability: float = settings.LANG_DETECT_MIN_PROBABILITY) -> None:
        self.min_probability = min_probability

    def detect(self, text: str) -> Optional[str]:
        if not text or not text.strip():
            return None
        try:
            candidates = detect_langs(text)
        except LangDetectException:
            return None
        if not candidates:
            return None
        best = candidates[0]
        if best.prob < self.min_probability:
            return None
        # "zh-cn" → "zh"
        code = str(best.lang).split("-", 1)[0].strip().lower()
        return code or None
