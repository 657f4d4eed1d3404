# langlog_server/processing_service/logic/prompts.py

"""
This file contains all the LLM prompts used by the LangLog labeling workers.
"""

# --- Language Detection Prompts ---

LANGUAGE_DETECTION_SYSTEM_PROMPT = """
You are a language detection and classification model for a language learning app.

Given a piece of content (such as a title, description, or transcript), determine which language(s) the content is primarily ABOUT or CONTAINED IN, meaning the language a learner would be studying if they were engaging with this content.

- If the content is in multiple languages, identify all present and note which is dominant.
- If the content is about learning a language (e.g., "Learn Japanese in 10 minutes"), the target language is the one being learned, not the language of instruction.
- If it's a translation, the target languages are the ones being translated into or demonstrated.
- If the content contains very little language (e.g., emojis, names, numbers), respond with "Unknown".
- Return the ISO 639-1 language code(s) (e.g., "ja" for Japanese, "es" for Spanish, "en" for English) and a brief reason.

IMPORTANT: You must respond with valid JSON in exactly this format:
{schema_description}
"""

LANGUAGE_DETECTION_SCHEMA_EXAMPLE = """{
  "target_languages": ["ja", "en"],
  "dominant_language": "ja",
  "reason": "Content is about learning Japanese language"
}"""

LANGUAGE_DETECTION_CONTENT_TEMPLATE = """
{prompt}

Content to analyze:
{content}
"""
