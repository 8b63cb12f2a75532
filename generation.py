"""Generation capability dispatcher: prompt rendering, provider calls, caching."""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from collections.abc import Callable, Sequence
from json import JSONDecodeError
from typing import Any, Protocol

import anthropic
import openai
from openai import OpenAI

from errors import GenerationError
from models import GenerationRequest, ResponseFormat
from prompts import PROMPTS

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-5.2")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.4"))
CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-opus-4-6")
CLAUDE_MAX_TOKENS = 4096
MAX_ATTEMPTS = 2

LOGGER = logging.getLogger(__name__)

_FORMAT_HINTS: dict[str, str] = {
    "json": "Return JSON only.",
    "html": "Return HTML only.",
    "text": "Return plain text only.",
}


class GenerateFn(Protocol):
    def __call__(
        self, prompt_key: str, args: Sequence[Any], response_format: ResponseFormat = "json"
    ) -> str: ...


class Generator:
    """Calls OpenAI (or Anthropic when only its key is configured), memoized by (key, args)."""

    def __init__(self) -> None:
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def __call__(
        self, prompt_key: str, args: Sequence[Any], response_format: ResponseFormat = "json"
    ) -> str:
        return self.generate(prompt_key, args, response_format)

    def generate(
        self, prompt_key: str, args: Sequence[Any], response_format: ResponseFormat = "json"
    ) -> str:
        request = GenerationRequest(prompt_key=prompt_key, args=tuple(args), response_format=response_format)
        with self._lock:
            cached = self._cache.get(request.cache_key)
        if cached is not None:
            LOGGER.debug("Generation cache hit for prompt=%s", prompt_key)
            return cached

        last_error: GenerationError | None = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                text = self._dispatch(request)
                with self._lock:
                    self._cache[request.cache_key] = text
                return text
            except GenerationError as exc:
                last_error = exc
                if exc.code in ("auth_failed", "invalid_params"):
                    raise
                LOGGER.warning(
                    "Generation failed for prompt=%s on attempt %s/%s: %s",
                    prompt_key,
                    attempt,
                    MAX_ATTEMPTS,
                    exc,
                )

        code = last_error.code if last_error is not None else "empty_response"
        raise GenerationError(code, f"Generation failed for prompt={prompt_key}: {last_error}") from last_error

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def _dispatch(self, request: GenerationRequest) -> str:
        template = PROMPTS.get(request.prompt_key)
        if template is None:
            raise GenerationError("invalid_params", f"Unknown prompt key: {request.prompt_key}")
        try:
            user_prompt = template.user(*request.args)
        except TypeError as exc:
            raise GenerationError("invalid_params", f"Bad arguments for {request.prompt_key}: {exc}") from exc
        system_prompt = f"{template.system}\n{_FORMAT_HINTS[request.response_format]}"

        if os.getenv("OPENAI_API_KEY"):
            text = _call_openai(system_prompt, user_prompt, request.response_format)
        elif os.getenv("ANTHROPIC_API_KEY"):
            text = _call_anthropic(system_prompt, user_prompt)
        else:
            raise GenerationError("auth_failed", "OPENAI_API_KEY or ANTHROPIC_API_KEY environment variable is required")

        if not text or not text.strip():
            raise GenerationError("empty_response", f"Generation returned an empty response for {request.prompt_key}")
        return text


def _call_openai(system_prompt: str, user_prompt: str, response_format: ResponseFormat) -> str:
    client = OpenAI(api_key=os.getenv("OPENAI_API_KEY"))
    kwargs: dict[str, Any] = {
        "model": OPENAI_MODEL,
        "temperature": OPENAI_TEMPERATURE,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
    }
    if response_format == "json":
        kwargs["response_format"] = {"type": "json_object"}

    try:
        response = client.chat.completions.create(**kwargs)
    except openai.AuthenticationError as exc:
        raise GenerationError("auth_failed", f"OpenAI rejected credentials: {exc}") from exc
    except openai.RateLimitError as exc:
        raise GenerationError("rate_limit", f"OpenAI rate limit: {exc}") from exc
    except openai.OpenAIError as exc:
        raise GenerationError("empty_response", f"OpenAI request failed: {exc}") from exc

    return response.choices[0].message.content or ""


def _call_anthropic(system_prompt: str, user_prompt: str) -> str:
    client = anthropic.Anthropic(api_key=os.getenv("ANTHROPIC_API_KEY"))
    LOGGER.debug("Calling Claude model=%s max_tokens=%s", CLAUDE_MODEL, CLAUDE_MAX_TOKENS)
    try:
        response = client.messages.create(
            model=CLAUDE_MODEL,
            max_tokens=CLAUDE_MAX_TOKENS,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
    except anthropic.AuthenticationError as exc:
        raise GenerationError("auth_failed", f"Anthropic rejected credentials: {exc}") from exc
    except anthropic.RateLimitError as exc:
        raise GenerationError("rate_limit", f"Anthropic rate limit: {exc}") from exc
    except anthropic.AnthropicError as exc:
        raise GenerationError("empty_response", f"Anthropic request failed: {exc}") from exc

    return "".join(getattr(block, "text", "") for block in response.content)


_FENCE_OPEN = re.compile(r"^```(?:html|json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"```\s*$")
_LEADING_H1 = re.compile(r"^\s*<h1[^>]*>.*?</h1>", re.IGNORECASE | re.DOTALL)
_LEADING_TITLE = re.compile(r"^\s*Title:.*?(\n|<br\s*/?>)", re.IGNORECASE)


def sanitize_html(html: str | None) -> str:
    """Strip code fences, a leading <h1> and a leading 'Title:' line from generated markup."""
    if not html:
        return ""
    clean = _FENCE_OPEN.sub("", html.strip())
    clean = _FENCE_CLOSE.sub("", clean).strip()
    clean = _LEADING_H1.sub("", clean)
    clean = _LEADING_TITLE.sub("", clean)
    return clean.strip()


def parse_json_response(content: str, repair: Callable[[str], str] | None = None) -> Any:
    """Parse possibly noisy model output into JSON, optionally asking the model to repair it."""
    try:
        return _parse_json(content)
    except RuntimeError:
        if repair is None:
            raise
        LOGGER.warning("JSON parse failed, requesting repair")
        return _parse_json(repair(content))


def _parse_json(content: str) -> Any:
    text = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", (content or "").strip())).strip()
    try:
        return json.loads(text)
    except JSONDecodeError:
        return _extract_first_json_value(text)


def _extract_first_json_value(content: str) -> Any:
    """Extract the first decodable JSON object or array from an arbitrary string."""
    decoder = json.JSONDecoder()
    for index, char in enumerate(content):
        if char not in "{[":
            continue
        try:
            candidate, _ = decoder.raw_decode(content[index:])
        except JSONDecodeError:
            continue
        if isinstance(candidate, (dict, list)):
            return candidate
    raise RuntimeError("Could not extract valid JSON from generation output")


def json_repairer(generate: GenerateFn) -> Callable[[str], str]:
    """Build a repair callback that routes broken JSON through the json_repair prompt."""

    def _repair(broken: str) -> str:
        return generate("json_repair", [broken[:8000]], "json")

    return _repair
