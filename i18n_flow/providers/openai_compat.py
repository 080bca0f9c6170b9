"""OpenAI-compatible streaming provider."""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping, Optional
import itertools
import json
import logging
import re
from urllib.parse import urlparse

import requests

from i18n_flow.core.context import TranslationContext
from i18n_flow.prompts.builder import build_messages

from .base import BaseProvider, ProviderError

logger = logging.getLogger(__name__)

_VERSION_SEGMENT = re.compile(r"/v\d+(?:/|$)")
DEFAULT_TIMEOUT_SECONDS = 60
MAX_ERROR_TEXT_CHARS = 4000


def _normalize_base_url(base_url: str) -> str:
    base_url = base_url.strip().rstrip("/")
    if not base_url:
        return base_url
    if base_url.endswith("/v1/chat/completions"):
        return base_url.rsplit("/chat/completions", 1)[0]

    path = (urlparse(base_url).path or "").lower()
    if not path or path == "/" or path.endswith("/v1") or _VERSION_SEGMENT.search(path):
        return base_url if path and path != "/" else f"{base_url}/v1"

    return base_url


def _build_url(base_url: str) -> str:
    base_url = base_url.strip().rstrip("/")
    if not base_url:
        return ""
    if base_url.endswith("/chat/completions"):
        return base_url
    return f"{_normalize_base_url(base_url)}/chat/completions"


def _normalize_keys(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        return [str(item).strip() for item in raw if str(item).strip()]
    if isinstance(raw, str):
        return [line.strip() for line in raw.splitlines() if line.strip()]
    return [str(raw).strip()] if str(raw).strip() else []


def _parse_timeout_seconds(value: Any) -> int | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        parsed = int(float(text))
    except (ValueError, TypeError):
        return None
    return parsed if parsed > 0 else None


def _record_usage(context: TranslationContext, usage: Any) -> None:
    if not isinstance(usage, dict):
        return
    context.add_token_usage(
        int(usage.get("prompt_tokens") or 0),
        int(usage.get("completion_tokens") or 0),
    )


class OpenAICompatProvider(BaseProvider):
    """
    Chat-completions client that yields content deltas as they arrive.

    Profile keys: base_url, api_key (one per line for rotation), model,
    temperature, max_tokens, headers, params, timeout, stream (default on).
    ``prompt`` holds the prompt profile passed to ``build_messages``.
    """

    def __init__(self, profile: Dict[str, Any], prompt: Optional[Dict[str, Any]] = None):
        super().__init__(profile)
        self.prompt = dict(prompt or profile.get("prompt") or {})
        self._api_keys = _normalize_keys(profile.get("api_key"))
        self._api_key_cycle = itertools.cycle(self._api_keys) if len(self._api_keys) > 1 else None
        self._session = requests.Session()

    def _pick_api_key(self) -> str:
        if not self._api_keys:
            return ""
        if self._api_key_cycle is not None:
            return next(self._api_key_cycle)
        return self._api_keys[0]

    def build_payload(self, messages: List[Dict[str, str]], stream: bool) -> Dict[str, Any]:
        model = str(self.profile.get("model") or "").strip()
        if not model:
            raise ProviderError("OpenAI-compatible provider requires model", error_type="invalid_config")
        payload: Dict[str, Any] = {"model": model, "messages": messages}
        params = self.profile.get("params") or {}
        if isinstance(params, dict):
            payload.update(params)
        if self.profile.get("temperature") is not None:
            payload["temperature"] = float(self.profile["temperature"])
        if self.profile.get("max_tokens") is not None:
            payload["max_tokens"] = int(self.profile["max_tokens"])
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        api_key = self._pick_api_key()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        extra = self.profile.get("headers") or {}
        if isinstance(extra, dict):
            headers.update({str(k): str(v) for k, v in extra.items()})
        return headers

    def execute(
        self, context: TranslationContext, texts: Optional[Mapping[str, str]] = None
    ) -> Iterator[str]:
        base_url = str(self.profile.get("base_url") or "").strip()
        if not base_url:
            raise ProviderError("OpenAI-compatible provider requires base_url", error_type="invalid_config")

        request = context.request
        messages = build_messages(
            self.prompt,
            dict(texts if texts is not None else context.texts),
            request.source_locale,
            request.target_locale,
            context.metadata,
        )
        stream = self.profile.get("stream", True) is not False
        payload = self.build_payload(messages, stream)
        url = _build_url(base_url)
        timeout = _parse_timeout_seconds(self.profile.get("timeout")) or DEFAULT_TIMEOUT_SECONDS

        try:
            resp = self._session.post(
                url,
                headers=self._headers(),
                data=json.dumps(payload, ensure_ascii=False),
                timeout=timeout,
                stream=stream,
            )
        except requests.Timeout as exc:
            raise ProviderError(
                f"OpenAI-compatible request timeout: {exc}", error_type="timeout", url=url
            ) from exc
        except requests.RequestException as exc:
            raise ProviderError(
                f"OpenAI-compatible request failed: {exc}", error_type="network_error", url=url
            ) from exc

        try:
            if resp.status_code >= 400:
                body = (resp.text or "").strip()[:MAX_ERROR_TEXT_CHARS]
                raise ProviderError(
                    f"OpenAI-compatible HTTP {resp.status_code}: {body}",
                    error_type="http_error",
                    status_code=resp.status_code,
                    url=url,
                    response_text=body,
                )
            if stream:
                yield from self._iter_stream(resp, context)
            else:
                yield self._read_message(resp, context, url)
        finally:
            resp.close()

    def _iter_stream(self, resp: Any, context: TranslationContext) -> Iterator[str]:
        for line in resp.iter_lines(decode_unicode=True):
            if not line or not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == "[DONE]":
                break
            try:
                event = json.loads(data)
            except ValueError:
                logger.debug("Skipping non-JSON stream line: %s", data[:200])
                continue
            _record_usage(context, event.get("usage"))
            for choice in event.get("choices") or []:
                delta = (choice or {}).get("delta") or {}
                content = delta.get("content")
                if content:
                    yield content

    def _read_message(self, resp: Any, context: TranslationContext, url: str) -> str:
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(
                "OpenAI-compatible response is not JSON",
                error_type="invalid_json",
                status_code=resp.status_code,
                url=url,
            ) from exc
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(
                "OpenAI-compatible response missing content",
                error_type="invalid_response",
                status_code=resp.status_code,
                url=url,
            ) from exc
        _record_usage(context, data.get("usage"))
        return str(text or "")
