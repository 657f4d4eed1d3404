# langlog_server/processing_service/logic/label_processors/language.py
import logging

from langlog_server.processing_service.db_models import ContentSource
from langlog_server.processing_service.models import ContentLabelPatch, LanguageDetectionResult

logger = logging.getLogger(__name__)


def apply_language_detection(patch: ContentLabelPatch, detection: LanguageDetectionResult,
                             source: ContentSource) -> None:
    """Sets the content language only when detection succeeded with at least one target language."""
    if not detection.success:
        logger.info(f"Language detection failed for {source.value} content: {detection.error}")
        return
    language = detection.content_language
    if language is None:
        logger.info(f"No supported target language detected for {source.value} content: {detection.reason}")
        return
    patch.content_language_code = language
    patch.target_language_codes = list(detection.target_languages)
    patch.language_evidence = [f"{source.value}:gemini", detection.reason]
