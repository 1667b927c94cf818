from __future__ import annotations

import base64
import time
from dataclasses import dataclass
from typing import Any

import httpx

from statement_intake.core.config import Settings, settings
from statement_intake.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)

_ANTHROPIC_VERSION = "2023-06-01"
_ANTHROPIC_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}


class ExtractionAdapterError(RuntimeError):
    pass


@dataclass(frozen=True)
class ModelUsage:
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class ModelResponse:
    text: str
    usage: ModelUsage | None = None
    stop_reason: str | None = None


class LLMClient:
    """One configured language-model endpoint. Holds no connection state between calls."""

    def __init__(
        self,
        *,
        provider: str,
        api_key: str | None,
        base_url: str,
        model: str,
        timeout_s: float,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._transport = transport

    def complete(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        image: bytes | None = None,
        image_mime_type: str | None = None,
    ) -> ModelResponse:
        if not self._api_key:
            raise ExtractionAdapterError(f"No API key configured for LLM provider {self.provider}")

        if self.provider == "openai":
            url, headers, payload = self._openai_request(
                system_prompt, user_prompt, max_tokens, image, image_mime_type
            )
        else:
            url, headers, payload = self._anthropic_request(
                system_prompt, user_prompt, max_tokens, image, image_mime_type
            )

        start = time.monotonic()
        log_event(
            logger,
            "llm.call.start",
            provider=self.provider,
            model=self.model,
            has_image=image is not None,
            prompt_chars=len(user_prompt),
        )
        try:
            with httpx.Client(timeout=self._timeout_s, transport=self._transport) as client:
                resp = client.post(url, headers=headers, json=payload)
                resp.raise_for_status()
                raw = resp.json()
        except httpx.HTTPStatusError as e:
            log_exception(
                logger,
                "llm.call.error",
                provider=self.provider,
                status_code=e.response.status_code,
                duration_ms=monotonic_ms(start),
            )
            raise ExtractionAdapterError(
                f"LLM request failed with HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            log_exception(
                logger,
                "llm.call.error",
                provider=self.provider,
                error_type=type(e).__name__,
                duration_ms=monotonic_ms(start),
            )
            raise ExtractionAdapterError(f"LLM request failed: {type(e).__name__}: {e}") from e

        if self.provider == "openai":
            response = _read_openai_response(raw)
        else:
            response = _read_anthropic_response(raw)

        log_event(
            logger,
            "llm.call.finish",
            provider=self.provider,
            model=self.model,
            response_chars=len(response.text),
            stop_reason=response.stop_reason,
            input_tokens=response.usage.input_tokens if response.usage else None,
            output_tokens=response.usage.output_tokens if response.usage else None,
            duration_ms=monotonic_ms(start),
        )
        return response

    def _anthropic_request(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        image: bytes | None,
        image_mime_type: str | None,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        content: list[dict[str, Any]] = []
        if image is not None:
            media_type = (image_mime_type or "").lower()
            if media_type == "image/jpg" or media_type not in _ANTHROPIC_IMAGE_TYPES:
                media_type = "image/jpeg"
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": media_type,
                        "data": base64.b64encode(image).decode("ascii"),
                    },
                }
            )
        content.append({"type": "text", "text": user_prompt})
        headers = {
            "x-api-key": str(self._api_key),
            "anthropic-version": _ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": 0,
            "system": system_prompt,
            "messages": [{"role": "user", "content": content}],
        }
        return self._base_url + "/messages", headers, payload

    def _openai_request(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        image: bytes | None,
        image_mime_type: str | None,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        content: list[dict[str, Any]] = []
        if image is not None:
            encoded = base64.b64encode(image).decode("ascii")
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{image_mime_type or 'image/jpeg'};base64,{encoded}"},
                }
            )
        content.append({"type": "text", "text": user_prompt})
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": 0,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
        }
        return self._base_url + "/chat/completions", headers, payload


def _read_anthropic_response(raw: Any) -> ModelResponse:
    if not isinstance(raw, dict):
        raise ExtractionAdapterError("Unexpected LLM response shape")
    text = ""
    for block in raw.get("content") or []:
        if isinstance(block, dict) and block.get("type") == "text":
            text = str(block.get("text") or "")
            break
    usage_raw = raw.get("usage")
    usage = None
    if isinstance(usage_raw, dict):
        usage = ModelUsage(
            input_tokens=int(usage_raw.get("input_tokens") or 0),
            output_tokens=int(usage_raw.get("output_tokens") or 0),
        )
    return ModelResponse(text=text, usage=usage, stop_reason=raw.get("stop_reason"))


def _read_openai_response(raw: Any) -> ModelResponse:
    try:
        choice = raw["choices"][0]
        text = str(choice["message"].get("content") or "")
    except (KeyError, IndexError, TypeError, AttributeError) as e:
        raise ExtractionAdapterError("Unexpected LLM response shape") from e
    usage_raw = raw.get("usage")
    usage = None
    if isinstance(usage_raw, dict):
        usage = ModelUsage(
            input_tokens=int(usage_raw.get("prompt_tokens") or 0),
            output_tokens=int(usage_raw.get("completion_tokens") or 0),
        )
    return ModelResponse(text=text, usage=usage, stop_reason=choice.get("finish_reason"))


class VisionAdapter:
    def __init__(self, client: LLMClient, *, default_max_tokens: int) -> None:
        self._client = client
        self._default_max_tokens = default_max_tokens

    def call_vision_model(
        self,
        image_bytes: bytes,
        *,
        mime_type: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
    ) -> ModelResponse:
        return self._client.complete(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            max_tokens=max_tokens or self._default_max_tokens,
            image=image_bytes,
            image_mime_type=mime_type,
        )


class TextAdapter:
    def __init__(self, client: LLMClient, *, default_max_tokens: int) -> None:
        self._client = client
        self._default_max_tokens = default_max_tokens

    def call_text_model(
        self, system_prompt: str, user_prompt: str, max_tokens: int | None = None
    ) -> ModelResponse:
        return self._client.complete(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            max_tokens=max_tokens or self._default_max_tokens,
        )


@dataclass(frozen=True)
class ExtractionAdapters:
    vision: VisionAdapter
    text: TextAdapter


def build_llm_client(
    config: Settings | None = None, *, transport: httpx.BaseTransport | None = None
) -> LLMClient:
    config = config or settings
    if config.llm_provider == "openai":
        return LLMClient(
            provider="openai",
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            model=config.openai_model,
            timeout_s=config.llm_timeout_seconds,
            transport=transport,
        )
    return LLMClient(
        provider="anthropic",
        api_key=config.anthropic_api_key,
        base_url=config.anthropic_base_url,
        model=config.anthropic_model,
        timeout_s=config.llm_timeout_seconds,
        transport=transport,
    )


def build_adapters(
    config: Settings | None = None, *, transport: httpx.BaseTransport | None = None
) -> ExtractionAdapters:
    config = config or settings
    client = build_llm_client(config, transport=transport)
    return ExtractionAdapters(
        vision=VisionAdapter(client, default_max_tokens=config.vision_max_tokens),
        text=TextAdapter(client, default_max_tokens=config.text_max_tokens),
    )
