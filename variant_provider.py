"""
wordwheel - Variant Provider
Backends that suggest alternatives for a word in its sentence context.

Relay side: OpenAI / Gemini chat backends (or the offline static bank),
wrapped in a per-context cache and served on /api/word-variations.
Viewer side: HttpVariantProvider calls that route.
"""

import threading
from typing import Dict, List, Optional, Sequence

import requests

from config import MASK_TOKEN, PREDICT_WORD, ProviderBackend, ProviderConfig
from logging_utils import log_event


class VariantProviderError(Exception):
    """Transport or decoding failure while fetching variations"""


def build_masked_sentence(word: str, context: Optional[str], position: Optional[int]) -> str:
    """Replace the word at position with the mask token"""
    if not context:
        return word
    if position is None:
        return context
    words = context.split(' ')
    if 0 <= position < len(words):
        words[position] = MASK_TOKEN
    elif position == len(words):
        words.append(MASK_TOKEN)
    return ' '.join(words)


def build_prompt(word: str, masked_sentence: str, count: int = 5) -> str:
    if word == PREDICT_WORD:
        return (
            f"Given this sentence ending in a {MASK_TOKEN}, suggest {count} words that could "
            f"naturally come next. Focus on poetic choices.\n\n"
            f"Sentence: {masked_sentence}\n\n"
            f"Return ONLY a comma-separated list of {count} words."
        )
    return (
        f"Given this sentence with a {MASK_TOKEN}, suggest {count} alternative words that fit "
        f"naturally. Focus on poetic alternatives.\n\n"
        f"Sentence: {masked_sentence}\n"
        f"Original word: {word}\n\n"
        f"Return ONLY a comma-separated list of {count} words."
    )


def parse_variations(text: Optional[str]) -> List[str]:
    """Split a comma-separated model reply into clean words"""
    if not text:
        return []
    return [part.strip() for part in text.split(',') if part.strip()]


class VariantProvider:
    """Base class: get_variations(word, context, position) -> ordered alternatives"""

    name = "base"

    def is_configured(self) -> bool:
        return True

    def get_variations(self, word: str, context: Optional[str], position: Optional[int]) -> List[str]:
        raise NotImplementedError


class StaticVariantProvider(VariantProvider):
    """Offline backend: looks the word up in a fixed bank of interchangeable groups"""

    name = "static"

    def __init__(self, bank: Sequence[Sequence[str]]):
        self.bank = [list(group) for group in bank if group]

    def get_variations(self, word, context, position):
        if not self.bank:
            return []
        if word == PREDICT_WORD:
            # Rotate through the group heads so consecutive predictions differ
            heads = [group[0] for group in self.bank]
            offset = (position or 0) % len(heads)
            return heads[offset:] + heads[:offset]

        needle = word.lower()
        for group in self.bank:
            if needle in (w.lower() for w in group):
                return [w for w in group if w.lower() != needle]
        return []


class _ChatProvider(VariantProvider):
    def __init__(self, config: ProviderConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def get_variations(self, word, context, position):
        masked = build_masked_sentence(word, context, position)
        prompt = build_prompt(word, masked, self.config.suggestion_count)
        try:
            response = self._post(prompt)
            response.raise_for_status()
            text = self._extract_text(response.json())
        except requests.RequestException as e:
            raise VariantProviderError(f"{self.name} request failed: {e}") from e
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise VariantProviderError(f"{self.name} returned an unexpected payload: {e}") from e
        return parse_variations(text)

    def _post(self, prompt: str) -> requests.Response:
        raise NotImplementedError

    def _extract_text(self, payload) -> str:
        raise NotImplementedError


class OpenAIVariantProvider(_ChatProvider):
    name = "openai"

    def is_configured(self) -> bool:
        return bool(self.config.openai_api_key)

    def _post(self, prompt):
        return self.session.post(
            self.config.openai_url,
            headers={"Authorization": f"Bearer {self.config.openai_api_key}"},
            json={
                "model": self.config.openai_model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
            },
            timeout=self.config.timeout_s,
        )

    def _extract_text(self, payload):
        return payload["choices"][0]["message"]["content"]


class GeminiVariantProvider(_ChatProvider):
    name = "gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta/models"

    def is_configured(self) -> bool:
        return bool(self.config.gemini_api_key)

    def _post(self, prompt):
        return self.session.post(
            f"{self.base_url}/{self.config.gemini_model}:generateContent",
            params={"key": self.config.gemini_api_key},
            json={
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": self.config.temperature,
                    "maxOutputTokens": self.config.max_tokens,
                },
            },
            timeout=self.config.timeout_s,
        )

    def _extract_text(self, payload):
        return payload["candidates"][0]["content"]["parts"][0]["text"]


class CachingVariantProvider(VariantProvider):
    """Caches results per context:position (or per word without context)"""

    def __init__(self, inner: VariantProvider):
        self.inner = inner
        self.name = inner.name
        self._cache: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def cache_key(word: str, context: Optional[str], position: Optional[int]) -> str:
        return f"{context}:{position}" if context else word

    def is_configured(self) -> bool:
        return self.inner.is_configured()

    def get_variations(self, word, context, position):
        key = self.cache_key(word, context, position)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return list(cached)

        variations = self.inner.get_variations(word, context, position)
        with self._lock:
            self._cache[key] = list(variations)
        return variations

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


class HttpVariantProvider(VariantProvider):
    """Viewer-side client for the relay's /api/word-variations route"""

    name = "http"

    def __init__(self, base_url: str, timeout_s: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def get_variations(self, word, context, position):
        try:
            response = self.session.post(
                f"{self.base_url}/api/word-variations",
                json={"word": word, "context": context, "position": position},
                timeout=self.timeout_s,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise VariantProviderError(f"word-variations request failed: {e}") from e
        except ValueError as e:
            raise VariantProviderError(f"word-variations returned invalid JSON: {e}") from e

        variations = data.get("variations") if isinstance(data, dict) else None
        if not isinstance(variations, list):
            raise VariantProviderError("word-variations response has no variations list")
        return [str(v) for v in variations if str(v).strip()]


def create_provider(config: ProviderConfig) -> VariantProvider:
    """Build the configured backend, wrapped in the result cache"""
    if config.backend == ProviderBackend.GEMINI:
        inner: VariantProvider = GeminiVariantProvider(config)
    elif config.backend == ProviderBackend.STATIC:
        inner = StaticVariantProvider(config.static_bank)
    else:
        inner = OpenAIVariantProvider(config)

    if not inner.is_configured():
        log_event("WARN", "Provider", "No API key configured for backend", backend=inner.name)
    else:
        log_event("INFO", "Provider", "Using backend", backend=inner.name)
    return CachingVariantProvider(inner)
