from langlog_server.processing_service.logic.label_processors.base import LabelProcessor, LabelProcessorRegistry
from langlog_server.processing_service.logic.label_processors.spotify import SpotifyLabelProcessor
from langlog_server.processing_service.logic.label_processors.website import WebsiteLabelProcessor
from langlog_server.processing_service.logic.label_processors.youtube import YouTubeLabelProcessor


def build_default_registry(settings) -> LabelProcessorRegistry:
    from langlog_server.processing_service.logic.llm_processing import GeminiLanguageDetector
    from langlog_server.processing_service.logic.youtube_client import YouTubeMetadataClient

    detector = GeminiLanguageDetector(settings)
    registry = LabelProcessorRegistry()
    registry.register(YouTubeLabelProcessor(YouTubeMetadataClient(settings), detector))
    registry.register(WebsiteLabelProcessor())
    registry.register(SpotifyLabelProcessor(detector))
    return registry


__all__ = [
    "LabelProcessor",
    "LabelProcessorRegistry",
    "SpotifyLabelProcessor",
    "WebsiteLabelProcessor",
    "YouTubeLabelProcessor",
    "build_default_registry",
]
