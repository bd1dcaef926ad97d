"""On-demand transcript translation with a process-lifetime cache.

Uses the OpenAI SDK against Gemini's OpenAI-compatible endpoint for a
single request/response completion per uncached (target, source, text).
Per-item failures fall back to the original text and are never raised.
"""

import asyncio
import logging

from openai import AsyncOpenAI

from errors import TranslationError
from languages import language_of

logger = logging.getLogger(__name__)

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
TRANSLATION_MODEL = "gemini-2.5-flash"
REQUEST_TIMEOUT = 30.0

PROMPT_TEMPLATE = (
    "Translate the following text from {source} to {target}. Provide ONLY the "
    "raw translated text, without any additional explanations, formatting, or "
    "quotation marks.\n\nText: \"{text}\"\n\nTranslation:"
)


class TranslationCache:
    """Memoized translate(text, source, target).

    Concurrent calls for the same key are not coalesced; both may reach the
    remote call and store the same result.

    Args:
        api_key: Gemini API key (needed only when a client is not injected)
        model: model name for the completion call
        client: optional AsyncOpenAI-compatible client
    """

    def __init__(self, api_key=None, model=TRANSLATION_MODEL, client=None,
                 base_url=GEMINI_OPENAI_BASE_URL):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self._client = client
        self._cache: dict[tuple[str, str, str], str] = {}
        self.remote_calls = 0

    def __len__(self) -> int:
        return len(self._cache)

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise TranslationError("No API key configured for translation")
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url,
                                       timeout=REQUEST_TIMEOUT)
        return self._client

    def get_cached(self, text: str, source: str, target: str):
        return self._cache.get((target, source, text))

    async def translate(self, text: str, source: str, target: str) -> str:
        """Translate text between language-accent codes.

        Returns text unchanged when it is empty or both codes share a language.
        """
        source_lang = language_of(source)
        target_lang = language_of(target)
        if not text or source_lang == target_lang:
            return text

        key = (target, source, text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        prompt = PROMPT_TEMPLATE.format(source=source_lang, target=target_lang, text=text)
        try:
            client = self._get_client()
            self.remote_calls += 1
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
            )
            translated = (response.choices[0].message.content or "").strip()
        except Exception as e:
            logger.error("Translation failed (%s -> %s): %s", source_lang, target_lang, e)
            return text

        if not translated:
            logger.warning("Empty translation (%s -> %s), keeping original", source_lang, target_lang)
            return text

        self._cache[key] = translated
        return translated


async def translate_messages(cache: TranslationCache, messages, target: str, source: str) -> int:
    """Fill message.translations[target] for every message missing it.

    Returns the number of messages translated.

    Raises:
        TranslationError: translation cannot proceed at all (e.g. no client)
    """
    if language_of(target) == language_of(source):
        return 0
    needed = [m for m in messages if target not in m.translations]
    if not needed:
        return 0

    # Fail the whole batch up front rather than once per message
    cache._get_client()

    results = await asyncio.gather(*(cache.translate(m.text, source, target) for m in needed))
    for message, translated in zip(needed, results):
        message.translations[target] = translated
    return len(needed)
