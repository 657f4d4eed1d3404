# langlog_server/processing_service/logic/label_processors/youtube.py
import logging

import requests

from langlog_server.processing_service.db_models import ContentLabel, ContentSource, MediaType
from langlog_server.processing_service.logic.label_processors.base import LabelProcessor
from langlog_server.processing_service.logic.label_processors.language import apply_language_detection
from langlog_server.processing_service.models import ContentLabelPatch, LabelProcessorResult
from langlog_server.shared.utils import split_content_key

logger = logging.getLogger(__name__)


def youtube_watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


class YouTubeLabelProcessor(LabelProcessor):
    """
    Canonical URL from the key, best-effort metadata from the YouTube Data API,
    then language detection over url, title and description.
    """

    source = ContentSource.YOUTUBE

    def __init__(self, metadata_client, language_detector):
        self.metadata_client = metadata_client
        self.language_detector = language_detector

    def process(self, label: ContentLabel) -> LabelProcessorResult:
        try:
            url = label.content_url
            if not url:
                prefix, video_id = split_content_key(label.content_key)
                if prefix != ContentSource.YOUTUBE.value:
                    return LabelProcessorResult(success=False, error=f"Not a YouTube content key: {label.content_key}")
                url = youtube_watch_url(video_id)

            patch = ContentLabelPatch(content_url=url, content_media_type=MediaType.VIDEO)

            try:
                metadata = self.metadata_client.fetch_metadata(url)
            except (requests.RequestException, ValueError) as e:
                logger.warning(f"YouTube metadata lookup failed for {label.content_key}: {e}")
                metadata = {}
            patch = patch.model_copy(update=metadata)

            detection = self.language_detector.detect(
                title=patch.title, description=patch.description, url=url
            )
            apply_language_detection(patch, detection, self.source)
            logger.debug(f"Built YouTube patch for {label.content_key}: title={patch.title!r} "
                         f"language={patch.content_language_code}")
            return LabelProcessorResult(success=True, patch=patch)
        except Exception as e:
            logger.error(f"YouTube label processing failed for {label.content_key}: {e}", exc_info=True)
            return LabelProcessorResult(success=False, error=str(e) or "unknown_error")
