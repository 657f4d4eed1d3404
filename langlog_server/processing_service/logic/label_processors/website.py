# langlog_server/processing_service/logic/label_processors/website.py
import logging

from langlog_server.processing_service.db_models import ContentLabel, ContentSource, MediaType
from langlog_server.processing_service.logic.label_processors.base import LabelProcessor
from langlog_server.processing_service.models import ContentLabelPatch, LabelProcessorResult
from langlog_server.shared.utils import domain_from_url

logger = logging.getLogger(__name__)


class WebsiteLabelProcessor(LabelProcessor):
    """Websites are language-agnostic: the label gets a title and URL from the domain and never a language."""

    source = ContentSource.WEBSITE

    def process(self, label: ContentLabel) -> LabelProcessorResult:
        content_key = label.content_key or ""
        prefix, _, rest = content_key.partition(":")
        domain = rest.strip().lower() if prefix.lower() == ContentSource.WEBSITE.value and rest else None
        if not domain and label.content_url:
            domain = domain_from_url(label.content_url)

        patch = ContentLabelPatch(
            content_url=label.content_url or (f"https://{domain}" if domain else None),
            content_media_type=MediaType.TEXT,
            title=domain or content_key or "website",
        )
        return LabelProcessorResult(success=True, patch=patch)
