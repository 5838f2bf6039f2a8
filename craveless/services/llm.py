import os
from typing import Optional, Protocol, Tuple

import httpx

LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_CONNECT_TIMEOUT_SECONDS = float(os.getenv("LLM_CONNECT_TIMEOUT_SECONDS", "10"))
LLM_WRITE_TIMEOUT_SECONDS = float(os.getenv("LLM_WRITE_TIMEOUT_SECONDS", "30"))
LLM_POOL_TIMEOUT_SECONDS = float(os.getenv("LLM_POOL_TIMEOUT_SECONDS", "60"))
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "600"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.6"))


def _http_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=LLM_CONNECT_TIMEOUT_SECONDS,
        read=LLM_TIMEOUT_SECONDS,
        write=LLM_WRITE_TIMEOUT_SECONDS,
        pool=LLM_POOL_TIMEOUT_SECONDS,
    )


class LLMRequestError(RuntimeError):
    def __init__(self, provider: str, model: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code


def extract_json_object(raw_text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` block in ``raw_text``.

    Braces inside JSON string literals are ignored, so prose or markdown
    fences around the object do not matter. Returns None when no balanced
    object exists.
    """
    text = raw_text or ""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            char = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : idx + 1]
        start = text.find("{", start + 1)
    return None


def _resolve_model_config() -> Tuple[str, str, str]:
    provider = os.getenv("DEFAULT_AI_PROVIDER", "").strip().lower()
    model = os.getenv("DEFAULT_AI_MODEL", "").strip()
    if provider == "openai":
        key = os.getenv("OPENAI_API_KEY", "")
    elif provider == "gemini":
        key = os.getenv("GEMINI_API_KEY", "")
    else:
        key = ""

    if provider and model and key:
        return provider, model, key
    raise ValueError("AI config missing")


async def _openai_request(client: httpx.AsyncClient, model: str, api_key: str, prompt: str) -> str:
    payload = {
        "model": model,
        "messages": [{"role": "user", "content": prompt}],
        "max_completion_tokens": LLM_MAX_TOKENS,
        "temperature": LLM_TEMPERATURE,
    }
    try:
        response = await client.post(
            "https://api.openai.com/v1/chat/completions",
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            json=payload,
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code if exc.response is not None else None
        detail = (exc.response.text or "").strip()[:220] if exc.response is not None else ""
        raise LLMRequestError(
            provider="openai",
            model=model,
            status_code=status,
            message=f"OpenAI request failed (status={status}): {detail or 'no response body'}",
        ) from exc
    except httpx.HTTPError as exc:
        raise LLMRequestError(
            provider="openai",
            model=model,
            message=f"OpenAI request failed: {str(exc)[:220] or type(exc).__name__}",
        ) from exc

    data = response.json()
    try:
        text = str(data["choices"][0]["message"].get("content") or "").strip()
    except (KeyError, IndexError, TypeError) as exc:
        raise LLMRequestError(provider="openai", model=model, message="OpenAI response had no choices") from exc
    if not text:
        raise LLMRequestError(provider="openai", model=model, message="OpenAI chat completion returned empty content")
    return text


async def _gemini_request(client: httpx.AsyncClient, model: str, api_key: str, prompt: str) -> str:
    url = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={api_key}"
    try:
        response = await client.post(
            url,
            headers={"Content-Type": "application/json"},
            json={
                "generationConfig": {"temperature": LLM_TEMPERATURE, "maxOutputTokens": LLM_MAX_TOKENS},
                "contents": [{"parts": [{"text": prompt}]}],
            },
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code if exc.response is not None else None
        detail = (exc.response.text or "").strip()[:220] if exc.response is not None else ""
        raise LLMRequestError(
            provider="gemini",
            model=model,
            status_code=status,
            message=f"Gemini request failed (status={status}): {detail or 'no response body'}",
        ) from exc
    except httpx.HTTPError as exc:
        raise LLMRequestError(
            provider="gemini",
            model=model,
            message=f"Gemini request failed: {str(exc)[:220] or type(exc).__name__}",
        ) from exc

    data = response.json()
    try:
        return str(data["candidates"][0]["content"]["parts"][0]["text"]).strip()
    except (KeyError, IndexError, TypeError) as exc:
        raise LLMRequestError(provider="gemini", model=model, message="Gemini response had no candidates") from exc


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


class RealTextGenerator:
    """Single-shot text generation; callers own any retry policy."""

    async def generate(self, prompt: str) -> str:
        provider, model, api_key = _resolve_model_config()
        async with httpx.AsyncClient(timeout=_http_timeout()) as client:
            if provider == "openai":
                return await _openai_request(client, model, api_key, prompt)
            if provider == "gemini":
                return await _gemini_request(client, model, api_key, prompt)
        raise ValueError("Unsupported AI provider")


def get_text_generator() -> TextGenerator:
    return RealTextGenerator()
