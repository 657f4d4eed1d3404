import json
from unittest.mock import MagicMock

import pytest

from langlog_server.processing_service.db_models import LanguageCode
from langlog_server.processing_service.logic.llm_processing import (
    GeminiLanguageDetector, LLMResponseCache, build_detection_content, clean_llm_json,
    map_to_supported_language_code
)
from langlog_server.processing_service.logic.settings import Settings
from langlog_server.processing_service.models import RawLanguageDetection


@pytest.fixture
def settings(tmp_path):
    settings = Settings()
    settings.GEMINI_API_KEY = "test-key"
    settings.LANGUAGE_DETECTION_MODEL_NAME = "gemini-test"
    settings.CACHE_DIR = tmp_path / "cache"
    settings.ENABLE_LLM_CACHE = True
    settings.CACHE_TTL_HOURS = 1
    return settings


def _client_returning(text):
    client = MagicMock()
    client.models.generate_content.return_value = MagicMock(text=text)
    return client


@pytest.mark.parametrize("code, expected", [
    ("ja", LanguageCode.JA),
    (" EN ", LanguageCode.EN),
    ("zh-CN", LanguageCode.ZH),
    ("zh-TW", LanguageCode.ZH),
    ("xx", None),
    ("", None),
    (None, None),
])
def test_map_to_supported_language_code(code, expected):
    assert map_to_supported_language_code(code) == expected


def test_clean_llm_json_strips_fences():
    assert clean_llm_json('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert clean_llm_json('```\n{"a": 1}```') == '{"a": 1}'
    assert clean_llm_json(' {"a": 1} ') == '{"a": 1}'


def test_build_detection_content():
    content = build_detection_content("Title", "Description " * 10, "https://x.test/v", truncate_limit=20)
    assert content.startswith("Title")
    assert content.endswith("URL: https://x.test/v")
    assert build_detection_content(None, None, "https://x.test/v", 20) == "https://x.test/v"
    assert build_detection_content(None, "  ", None, 20) == ""


def test_detect_parses_and_maps_response(settings):
    payload = {"target_languages": ["ja", "en", "xx"], "dominant_language": "ja", "reason": "Japanese narration"}
    client = _client_returning("```json\n" + json.dumps(payload) + "\n```")
    detector = GeminiLanguageDetector(settings, client=client)

    result = detector.detect(title="日本語", description="説明", url="https://www.youtube.com/watch?v=abc")

    assert result.success is True
    assert result.target_languages == [LanguageCode.JA, LanguageCode.EN]
    assert result.dominant_language == LanguageCode.JA
    assert result.content_language == LanguageCode.JA
    call = client.models.generate_content.call_args
    assert call.kwargs["model"] == "gemini-test"
    assert "日本語" in call.kwargs["contents"]


def test_dominant_outside_targets_falls_back_to_first_target(settings):
    payload = {"target_languages": ["es"], "dominant_language": "en", "reason": "English lesson about Spanish"}
    detector = GeminiLanguageDetector(settings, client=_client_returning(json.dumps(payload)))

    result = detector.detect(title="Learn Spanish")

    assert result.content_language == LanguageCode.ES


def test_detect_uses_cache_on_second_call(settings):
    payload = {"target_languages": "fr", "dominant_language": "fr", "reason": "French"}
    client = _client_returning(json.dumps(payload))
    detector = GeminiLanguageDetector(settings, client=client)

    first = detector.detect(title="Bonjour")
    second = detector.detect(title="Bonjour")

    assert first.target_languages == [LanguageCode.FR]
    assert second.target_languages == [LanguageCode.FR]
    assert client.models.generate_content.call_count == 1


def test_detect_reports_invalid_json(settings):
    detector = GeminiLanguageDetector(settings, client=_client_returning("not json at all"))

    result = detector.detect(title="Anything")

    assert result.success is False
    assert "JSON parse failed" in result.error
    assert result.content_language is None


def test_detect_reports_api_errors(settings):
    client = MagicMock()
    client.models.generate_content.side_effect = RuntimeError("quota exceeded")
    detector = GeminiLanguageDetector(settings, client=client)

    result = detector.detect(title="Anything")

    assert result.success is False
    assert result.error == "quota exceeded"


def test_detect_without_api_key(settings):
    settings.GEMINI_API_KEY = ""
    detector = GeminiLanguageDetector(settings)

    result = detector.detect(title="Anything")

    assert result.success is False


def test_detect_without_content(settings):
    client = MagicMock()
    detector = GeminiLanguageDetector(settings, client=client)

    result = detector.detect()

    assert result.success is False
    client.models.generate_content.assert_not_called()


def test_cache_round_trip_and_disable(settings):
    cache = LLMResponseCache(settings)
    key = cache.generate_cache_key("some content")
    assert key.startswith("lang_gemini-test_")

    cache.save_to_cache(key, RawLanguageDetection(target_languages=["ko"], dominant_language="ko", reason="r"))
    assert cache.get_cached_response(key).target_languages == ["ko"]

    settings.ENABLE_LLM_CACHE = False
    assert LLMResponseCache(settings).get_cached_response(key) is None
