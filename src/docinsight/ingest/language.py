"""Document language detection."""
from __future__ import annotations

import logging
from typing import Optional

from langdetect import DetectorFactory, LangDetectException, detect

LOGGER = logging.getLogger(__name__)
DetectorFactory.seed = 0

# langdetect samples n-grams; a bounded prefix is enough and keeps large documents cheap.
_SAMPLE_CHARS = 20_000


class LanguageDetector:
    """Deterministic wrapper around langdetect returning ``None`` when unsure."""

    def __init__(self, sample_chars: int = _SAMPLE_CHARS) -> None:
        self.sample_chars = sample_chars

    def detect(self, text: str) -> Optional[str]:
        sample = text[: self.sample_chars].strip()
        if not sample:
            return None
        try:
            language = detect(sample)
        except LangDetectException:
            LOGGER.info("Unable to determine language for text of length %s", len(text))
            return None
        LOGGER.debug("Detected language: %s", language)
        return language
