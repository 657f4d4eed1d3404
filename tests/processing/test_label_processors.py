from unittest.mock import MagicMock

import pytest
import requests

from langlog_server.processing_service.db_models import (
    ContentLabel, ContentSource, LabelStage, LanguageCode, MediaType
)
from langlog_server.processing_service.errors import UnsupportedContentSourceError
from langlog_server.processing_service.logic.label_processors import (
    LabelProcessorRegistry, SpotifyLabelProcessor, WebsiteLabelProcessor, YouTubeLabelProcessor
)
from langlog_server.processing_service.logic.settings import Settings
from langlog_server.processing_service.logic.youtube_client import YouTubeMetadataClient, best_thumbnail_url
from langlog_server.processing_service.models import LanguageDetectionResult


def _label(content_key, source, **kwargs):
    return ContentLabel(content_key=content_key, content_source=source, stage=LabelStage.PROCESSING, **kwargs)


def _detector(result):
    detector = MagicMock()
    detector.detect.return_value = result
    return detector


JA_DETECTION = LanguageDetectionResult(
    success=True, dominant_language=LanguageCode.JA, target_languages=[LanguageCode.JA], reason="Japanese audio"
)


class TestYouTubeLabelProcessor:

    def test_enriches_and_detects_language(self):
        metadata = MagicMock()
        metadata.fetch_metadata.return_value = {"title": "東京の旅", "author_name": "Channel",
                                                "description": "旅行", "full_duration_in_ms": 600000}
        detector = _detector(JA_DETECTION)
        processor = YouTubeLabelProcessor(metadata, detector)

        result = processor.process(_label("youtube:abc123", ContentSource.YOUTUBE))

        assert result.success is True
        patch = result.patch
        assert patch.content_url == "https://www.youtube.com/watch?v=abc123"
        assert patch.content_media_type == MediaType.VIDEO
        assert patch.title == "東京の旅"
        assert patch.full_duration_in_ms == 600000
        assert patch.content_language_code == LanguageCode.JA
        assert patch.language_evidence == ["youtube:gemini", "Japanese audio"]
        detector.detect.assert_called_once_with(title="東京の旅", description="旅行",
                                                url="https://www.youtube.com/watch?v=abc123")

    def test_metadata_failure_is_not_fatal(self):
        metadata = MagicMock()
        metadata.fetch_metadata.side_effect = requests.ConnectionError("offline")
        processor = YouTubeLabelProcessor(metadata, _detector(JA_DETECTION))

        result = processor.process(_label("youtube:abc123", ContentSource.YOUTUBE))

        assert result.success is True
        assert result.patch.title is None
        assert result.patch.content_language_code == LanguageCode.JA

    def test_failed_detection_completes_without_language(self):
        metadata = MagicMock()
        metadata.fetch_metadata.return_value = {}
        failed = LanguageDetectionResult(success=False, error="quota")
        processor = YouTubeLabelProcessor(metadata, _detector(failed))

        result = processor.process(_label("youtube:abc123", ContentSource.YOUTUBE))

        assert result.success is True
        assert result.patch.content_language_code is None
        assert result.patch.language_evidence is None

    def test_detector_crash_becomes_failure(self):
        metadata = MagicMock()
        metadata.fetch_metadata.return_value = {}
        detector = MagicMock()
        detector.detect.side_effect = RuntimeError("kaput")
        processor = YouTubeLabelProcessor(metadata, detector)

        result = processor.process(_label("youtube:abc123", ContentSource.YOUTUBE))

        assert result.success is False
        assert result.error == "kaput"


class TestWebsiteLabelProcessor:

    def test_title_and_url_from_domain(self):
        result = WebsiteLabelProcessor().process(_label("website:nhk.or.jp", ContentSource.WEBSITE))

        assert result.success is True
        assert result.patch.title == "nhk.or.jp"
        assert result.patch.content_url == "https://nhk.or.jp"
        assert result.patch.content_media_type == MediaType.TEXT
        assert result.patch.content_language_code is None


class TestSpotifyLabelProcessor:

    def test_defaults_and_detection(self):
        detector = _detector(JA_DETECTION)
        result = SpotifyLabelProcessor(detector).process(_label("spotify:4uLU6hMC", ContentSource.SPOTIFY))

        assert result.success is True
        assert result.patch.content_url == "https://open.spotify.com/track/4uLU6hMC"
        assert result.patch.content_media_type == MediaType.AUDIO
        assert result.patch.title == "Spotify Track 4uLU6hMC"
        assert result.patch.author_name == "Unknown Artist"
        assert result.patch.content_language_code == LanguageCode.JA

    def test_wrong_prefix(self):
        result = SpotifyLabelProcessor(_detector(JA_DETECTION)).process(
            _label("youtube:abc", ContentSource.SPOTIFY))
        assert result.success is False


class TestRegistry:

    def test_lookup_by_source(self):
        registry = LabelProcessorRegistry()
        registry.register(WebsiteLabelProcessor())

        assert isinstance(registry.get(ContentSource.WEBSITE), WebsiteLabelProcessor)
        assert registry.get(ContentSource.ANKI) is None
        assert registry.sources() == ["website"]
        with pytest.raises(UnsupportedContentSourceError):
            registry.require(ContentSource.ANKI)


class TestYouTubeMetadataClient:

    @pytest.fixture
    def settings(self):
        settings = Settings()
        settings.YOUTUBE_API_KEY = "yt-key"
        return settings

    def test_video_fields(self, settings):
        http = MagicMock()
        http.get.return_value.json.return_value = {"items": [{
            "snippet": {
                "title": "Video",
                "channelTitle": "Chan",
                "channelId": "UC123",
                "description": "x" * 6000,
                "thumbnails": {"default": {"url": "d.jpg"}, "high": {"url": "h.jpg"}},
            },
            "contentDetails": {"duration": "PT1M30S"},
        }]}
        client = YouTubeMetadataClient(settings, session=http)

        fields = client.fetch_metadata("https://www.youtube.com/watch?v=abc123")

        assert fields["title"] == "Video"
        assert fields["author_url"] == "https://www.youtube.com/channel/UC123"
        assert fields["thumbnail_url"] == "h.jpg"
        assert len(fields["description"]) == 5000
        assert fields["full_duration_in_ms"] == 90000
        params = http.get.call_args.kwargs["params"]
        assert params["id"] == "abc123"
        assert params["key"] == "yt-key"

    def test_disabled_without_key(self, settings):
        settings.YOUTUBE_API_KEY = ""
        http = MagicMock()
        assert YouTubeMetadataClient(settings, session=http).fetch_metadata("https://youtu.be/abc") == {}
        http.get.assert_not_called()

    def test_best_thumbnail(self):
        assert best_thumbnail_url({"medium": {"url": "m"}, "maxres": {"url": "x"}}) == "x"
        assert best_thumbnail_url(None) is None
