# langlog_server/processing_service/logic/label_processors/spotify.py
import logging

from langlog_server.processing_service.db_models import ContentLabel, ContentSource, MediaType
from langlog_server.processing_service.logic.label_processors.base import LabelProcessor
from langlog_server.processing_service.logic.label_processors.language import apply_language_detection
from langlog_server.processing_service.models import ContentLabelPatch, LabelProcessorResult
from langlog_server.shared.utils import split_content_key

logger = logging.getLogger(__name__)


class SpotifyLabelProcessor(LabelProcessor):
    """Tracks keep whatever metadata was stored on the label; the language comes from the LLM."""

    source = ContentSource.SPOTIFY

    def __init__(self, language_detector):
        self.language_detector = language_detector

    def process(self, label: ContentLabel) -> LabelProcessorResult:
        try:
            prefix, track_id = split_content_key(label.content_key)
        except ValueError as e:
            return LabelProcessorResult(success=False, error=str(e))
        if prefix != ContentSource.SPOTIFY.value:
            return LabelProcessorResult(success=False, error="Invalid contentKey format for Spotify processing")

        try:
            patch = ContentLabelPatch(
                content_url=f"https://open.spotify.com/track/{track_id}",
                content_media_type=MediaType.AUDIO,
                title=label.title or f"Spotify Track {track_id}",
                author_name=label.author_name or "Unknown Artist",
                thumbnail_url=label.thumbnail_url,
                full_duration_in_ms=label.full_duration_in_ms,
            )
            detection = self.language_detector.detect(
                title=patch.title, description=f"Spotify track: {track_id}", url=patch.content_url
            )
            apply_language_detection(patch, detection, self.source)
            return LabelProcessorResult(success=True, patch=patch)
        except Exception as e:
            logger.error(f"Spotify label processing failed for {label.content_key}: {e}", exc_info=True)
            return LabelProcessorResult(success=False, error=str(e) or "unknown_error")
