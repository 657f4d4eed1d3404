# langlog_server/processing_service/logic/llm_processing.py
"""
LLM processing module for the LangLog labeling workers.
This module contains the classes responsible for interacting with the
Google Gemini LLM to decide which language a piece of content is in or
about, including caching responses.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

from google import genai
from google.genai import types as genai_types
from pydantic import ValidationError

from langlog_server.processing_service.db_models import LanguageCode
from langlog_server.processing_service.logic import prompts
from langlog_server.processing_service.logic.settings import Settings as ServiceSettingsType
from langlog_server.processing_service.models import LanguageDetectionResult, RawLanguageDetection

log = logging.getLogger(__name__)

_LANGUAGE_ALIASES = {
    'zh-cn': LanguageCode.ZH,
    'zh-tw': LanguageCode.ZH,
}


def map_to_supported_language_code(code: Optional[str]) -> Optional[LanguageCode]:
    """Maps an ISO 639-1 code returned by the model to a supported LanguageCode, or None."""
    if not code:
        return None
    normalized = code.strip().lower()
    if normalized in _LANGUAGE_ALIASES:
        return _LANGUAGE_ALIASES[normalized]
    try:
        return LanguageCode(normalized)
    except ValueError:
        return None


def build_detection_content(title: Optional[str], description: Optional[str], url: Optional[str],
                            truncate_limit: int) -> str:
    """Title and description come first; the URL is context, or the only input when nothing else is known."""
    title_desc = "\n\n".join(part.strip() for part in (title or "", description or "") if part and part.strip())
    if title_desc:
        content = title_desc[:truncate_limit]
        if url:
            content += f"\n\nURL: {url}"
        return content
    return url or ""


def clean_llm_json(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:].strip()
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:].strip()
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3].strip()
    return cleaned


class LLMResponseCache:
    """Manages caching of language detection responses."""

    def __init__(self, settings: ServiceSettingsType):
        self.settings = settings
        self.cache_enabled = settings.ENABLE_LLM_CACHE
        self.cache_dir = settings.CACHE_DIR

        if self.cache_enabled:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            log.info(f"LLM cache enabled, using directory: {self.cache_dir}")
        else:
            log.info("LLM cache disabled")

    def generate_cache_key(self, content: str) -> str:
        content_hash = hashlib.md5(content.encode()).hexdigest()
        return f"lang_{self.settings.LANGUAGE_DETECTION_MODEL_NAME}_{content_hash}"

    def get_cached_response(self, cache_key: str) -> Optional[RawLanguageDetection]:
        if not self.cache_enabled:
            return None
        cache_file = self.cache_dir / f"{cache_key}.json"
        if not cache_file.exists():
            return None
        try:
            cache_age = datetime.now(timezone.utc) - datetime.fromtimestamp(cache_file.stat().st_mtime, tz=timezone.utc)
            if cache_age > timedelta(hours=self.settings.CACHE_TTL_HOURS):
                log.debug(f"Cache expired for key {cache_key}, removing")
                cache_file.unlink()
                return None
            with open(cache_file, 'r') as f:
                cached_data = json.load(f)
            log.info(f"Using cached LLM response for key {cache_key}")
            return RawLanguageDetection.model_validate(cached_data)
        except (OSError, ValueError, ValidationError) as e:
            log.warning(f"Failed to load cache for key {cache_key}: {e}")
            if cache_file.exists():
                try:
                    cache_file.unlink()
                except OSError as unlink_e:
                    log.error(f"Failed to unlink corrupted cache file {cache_file}: {unlink_e}")
            return None

    def save_to_cache(self, cache_key: str, detection: RawLanguageDetection) -> None:
        if not self.cache_enabled:
            return
        try:
            cache_file = self.cache_dir / f"{cache_key}.json"
            with open(cache_file, 'w') as f:
                json.dump(detection.model_dump(mode='json'), f, indent=2)
            log.debug(f"Saved LLM response to cache with key {cache_key}")
        except OSError as e:
            log.warning(f"Failed to save to cache for key {cache_key}: {e}")


class GeminiLanguageDetector:
    """Detects the language(s) a piece of content is in or about."""

    def __init__(self, settings: ServiceSettingsType, client=None, cache: Optional[LLMResponseCache] = None):
        self.settings = settings
        self.client = client
        self.cache = cache if cache is not None else LLMResponseCache(settings)
        self._client_initialized = client is not None

    def _initialize_client(self):
        """Lazy initialization of the LLM client."""
        if self._client_initialized:
            return

        try:
            api_key = self.settings.GEMINI_API_KEY
            if not api_key:
                raise ValueError("GEMINI_API_KEY not configured in service settings")

            self.client = genai.Client(api_key=api_key)
            log.info(f"Gemini client initialized with model target: {self.settings.LANGUAGE_DETECTION_MODEL_NAME}")
        except Exception as e:
            log.error(f"Failed to initialize Gemini client: {e}. Language detection will be disabled.")
            self.client = None
        self._client_initialized = True

    def _build_prompt(self, content: str) -> str:
        system_prompt = prompts.LANGUAGE_DETECTION_SYSTEM_PROMPT.format(
            schema_description=prompts.LANGUAGE_DETECTION_SCHEMA_EXAMPLE
        )
        return prompts.LANGUAGE_DETECTION_CONTENT_TEMPLATE.format(prompt=system_prompt.strip(), content=content)

    def _to_result(self, raw: RawLanguageDetection) -> LanguageDetectionResult:
        mapped_targets = []
        for code in raw.target_languages:
            mapped = map_to_supported_language_code(code)
            if mapped is not None and mapped not in mapped_targets:
                mapped_targets.append(mapped)
        return LanguageDetectionResult(
            success=True,
            dominant_language=map_to_supported_language_code(raw.dominant_language),
            target_languages=mapped_targets,
            reason=raw.reason,
        )

    def detect(self, title: Optional[str] = None, description: Optional[str] = None,
               url: Optional[str] = None) -> LanguageDetectionResult:
        """
        Never raises: every failure is reported as success=False with an error message.
        """
        content = build_detection_content(title, description, url, self.settings.LANGUAGE_DETECTION_TRUNCATE_LIMIT)
        if not content.strip():
            return LanguageDetectionResult(success=False, error="No content provided for analysis")

        cache_key = self.cache.generate_cache_key(content)
        cached = self.cache.get_cached_response(cache_key)
        if cached is not None:
            return self._to_result(cached)

        if not self._client_initialized:
            self._initialize_client()
        if not self.client:
            return LanguageDetectionResult(success=False, error="GEMINI_API_KEY not configured")

        try:
            config = genai_types.GenerateContentConfig(
                response_mime_type="application/json",
                temperature=0.0,
            )
            response = self.client.models.generate_content(
                model=self.settings.LANGUAGE_DETECTION_MODEL_NAME,
                contents=self._build_prompt(content),
                config=config
            )
        except Exception as e:
            log.error(f"Gemini language detection call failed: {e}", exc_info=True)
            return LanguageDetectionResult(success=False, error=str(e), reason="Unexpected error occurred")

        if not response.text:
            log.warning("Empty response from LLM for language detection")
            return LanguageDetectionResult(success=False, error="Empty response")

        try:
            raw = RawLanguageDetection.model_validate(json.loads(clean_llm_json(response.text)))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            log.error(f"Failed to parse LLM JSON response: {e}. Response text: {response.text[:500]}")
            return LanguageDetectionResult(success=False, error=f"JSON parse failed: {e}", reason="Invalid JSON response")

        self.cache.save_to_cache(cache_key, raw)
        result = self._to_result(raw)
        log.debug(f"Language detection result: dominant={result.dominant_language} targets={result.target_languages}")
        return result
