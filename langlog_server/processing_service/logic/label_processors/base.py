# langlog_server/processing_service/logic/label_processors/base.py
import logging
from typing import Dict, Optional

from langlog_server.processing_service.db_models import ContentLabel, ContentSource
from langlog_server.processing_service.errors import UnsupportedContentSourceError
from langlog_server.processing_service.models import LabelProcessorResult

logger = logging.getLogger(__name__)


class LabelProcessor:
    """Enriches one content label. Implementations report failures in the result instead of raising."""

    source: ContentSource

    def process(self, label: ContentLabel) -> LabelProcessorResult:
        raise NotImplementedError


class LabelProcessorRegistry:
    def __init__(self):
        self._processors: Dict[ContentSource, LabelProcessor] = {}

    def register(self, processor: LabelProcessor) -> None:
        if processor.source in self._processors:
            logger.warning(f"Replacing label processor for source [{processor.source.value}]")
        self._processors[processor.source] = processor

    def get(self, source: ContentSource) -> Optional[LabelProcessor]:
        return self._processors.get(source)

    def require(self, source: ContentSource) -> LabelProcessor:
        processor = self.get(source)
        if processor is None:
            raise UnsupportedContentSourceError(source.value)
        return processor

    def sources(self):
        return sorted(s.value for s in self._processors)
