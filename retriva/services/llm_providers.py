"""Pluggable LLM provider abstraction layer + session-scoped model cascade.

Usage:
  from retriva.services.llm_providers import CascadeClient, LLMRequest
  cascade = CascadeClient()            # one per session / user context
  text = await cascade.execute(LLMRequest(text="Hello", system="Answer in JSON"))

Providers:
    - EchoProvider: deterministic echo, for tests/local
    - OpenAIProvider: OpenAI Chat Completions (vision via image_url parts)
    - GeminiProvider: Google Gemini via google-generativeai

Model ids are "<provider>/<model>"; a bare name means openai.
Add new provider by implementing BaseLLMProvider and registering it in PROVIDER_FACTORIES.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple
import abc
import asyncio
import random
import time

import google.generativeai as genai
import openai
from google.api_core import exceptions as gexc

from config import settings
from retriva.scripts.logging_config import get_logger, log_cascade_attempt, log_cascade_outcome
from retriva.services import image_payload
from retriva.services.errors import (
    AllModelsExhausted,
    MalformedResponse,
    ModelError,
    ModelThrottled,
    ModelTransientError,
    ModelUnavailable,
)

logger = get_logger("model_cascade")

DEFAULT_PROVIDER = "openai"

# Provider replies are one of: raw str | {"message": {"content": str}} | {"text": str}
Envelope = Any


@dataclass
class LLMRequest:
    text: str
    system: Optional[str] = None
    images: List[str] = field(default_factory=list)  # data URIs or https URLs


class BaseLLMProvider(abc.ABC):
    name: str

    @abc.abstractmethod
    async def complete(self, model: str, request: LLMRequest) -> Envelope:
        ...


class EchoProvider(BaseLLMProvider):
    name = "echo"

    async def complete(self, model: str, request: LLMRequest) -> Envelope:
        return request.text


class OpenAIProvider(BaseLLMProvider):
    name = "openai"

    def __init__(self, client: Optional[openai.AsyncOpenAI] = None):
        if client is None:
            if not settings.OPENAI_API_KEY:
                raise RuntimeError("OPENAI_API_KEY missing")
            client = openai.AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                base_url=settings.OPENAI_BASE_URL,
                timeout=settings.LLM_TIMEOUT_SECONDS,
                max_retries=0,  # retries are the cascade's job
            )
        self._client = client

    async def complete(self, model: str, request: LLMRequest) -> Envelope:
        messages: List[Dict[str, Any]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        if request.images:
            parts: List[Dict[str, Any]] = [{"type": "text", "text": request.text}]
            for url in request.images[:2]:
                parts.append({"type": "image_url", "image_url": {"url": url}})
            messages.append({"role": "user", "content": parts})
        else:
            messages.append({"role": "user", "content": request.text})
        resp = await self._client.chat.completions.create(model=model, messages=messages)
        return {"message": {"content": resp.choices[0].message.content}}


class GeminiProvider(BaseLLMProvider):
    name = "gemini"

    def __init__(self):
        if not settings.GEMINI_API_KEY:
            raise RuntimeError("GEMINI_API_KEY missing")
        genai.configure(api_key=settings.GEMINI_API_KEY)

    async def complete(self, model: str, request: LLMRequest) -> Envelope:
        gm = genai.GenerativeModel(model, system_instruction=request.system or None)
        contents: List[Any] = [request.text]
        for url in request.images[:2]:
            inline = image_payload.split_data_uri(url)
            if inline is None:
                # remote URLs are not fetched for Gemini; the prompt text still goes out
                logger.info("gemini.skip_remote_image model=%s", model)
                continue
            mime, data = inline
            contents.append({"mime_type": mime, "data": data})
        resp = await gm.generate_content_async(
            contents, request_options={"timeout": settings.LLM_TIMEOUT_SECONDS}
        )
        return {"text": resp.text}


PROVIDER_FACTORIES: Dict[str, Callable[[], BaseLLMProvider]] = {
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
    "echo": EchoProvider,
}


def normalize_response(envelope: Envelope, model_id: str = "?") -> str:
    """Plain text from a known envelope; unknown shapes fail closed."""
    text: Optional[str] = None
    if isinstance(envelope, str):
        text = envelope
    elif isinstance(envelope, dict):
        message = envelope.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            text = message["content"]
        elif isinstance(envelope.get("text"), str):
            text = envelope["text"]
    if text is None:
        raise MalformedResponse(model_id, f"unknown envelope {type(envelope).__name__}")
    if not text.strip():
        raise MalformedResponse(model_id, "empty content")
    return text


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "code", "status"):
        v = getattr(exc, attr, None)
        if isinstance(v, int) and not isinstance(v, bool):
            return v
    return None


def classify_error(model_id: str, exc: BaseException) -> ModelError:
    """Map SDK / transport exceptions onto the cascade taxonomy."""
    if isinstance(exc, ModelError):
        return exc
    msg = str(exc)[:300]
    if isinstance(exc, (openai.NotFoundError, gexc.NotFound)):
        return ModelUnavailable(model_id, msg, exc)
    if isinstance(exc, (openai.RateLimitError, gexc.ResourceExhausted, gexc.TooManyRequests)):
        return ModelThrottled(model_id, msg, exc)
    status = _status_of(exc)
    if status == 404:
        return ModelUnavailable(model_id, msg, exc)
    if status == 429:
        return ModelThrottled(model_id, msg, exc)
    low = msg.lower()
    if "quota" in low or "rate limit" in low or "too many requests" in low:
        return ModelThrottled(model_id, msg, exc)
    if "not found" in low and "model" in low:
        return ModelUnavailable(model_id, msg, exc)
    return ModelTransientError(model_id, msg, exc)


class CascadeClient:
    """Ordered model fallback with session-scoped exclusions.

    Attempts run one at a time. NotFound excludes a model; quota / rate limit
    excludes it and waits a jittered backoff; anything else is skipped for this
    call only. When every model of the ordering ends up excluded the exclusion
    set is cleared once and the ordering retried from the top before
    AllModelsExhausted is raised.
    """

    def __init__(
        self,
        ordering: Optional[Iterable[str] | str] = None,
        providers: Optional[Dict[str, BaseLLMProvider]] = None,
        backoff: Optional[Tuple[float, float]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.ordering: List[str] = parse_ordering(ordering if ordering is not None else settings.LLM_MODEL_CASCADE)
        self._providers: Dict[str, BaseLLMProvider] = dict(providers or {})
        self._backoff = backoff or (settings.LLM_BACKOFF_MIN_SECONDS, settings.LLM_BACKOFF_MAX_SECONDS)
        self._sleep = sleep
        self.excluded: Set[str] = set()
        self.last_model: Optional[str] = None

    def reset(self) -> None:
        self.excluded.clear()

    def split_model_id(self, model_id: str) -> Tuple[str, str]:
        provider, sep, model = model_id.partition("/")
        if sep and (provider in self._providers or provider in PROVIDER_FACTORIES):
            return provider, model
        return DEFAULT_PROVIDER, model_id

    def _provider(self, model_id: str, provider_name: str) -> BaseLLMProvider:
        prov = self._providers.get(provider_name)
        if prov is not None:
            return prov
        factory = PROVIDER_FACTORIES.get(provider_name)
        if factory is None:
            raise ModelUnavailable(model_id, f"unknown provider {provider_name}")
        try:
            prov = factory()
        except Exception as e:
            logger.warning("provider.init_failed provider=%s err=%s", provider_name, e)
            raise ModelUnavailable(model_id, f"provider init failed: {e}", e) from e
        self._providers[provider_name] = prov
        return prov

    async def _attempt(self, model_id: str, request: LLMRequest) -> str:
        provider_name, model = self.split_model_id(model_id)
        prov = self._provider(model_id, provider_name)
        try:
            envelope = await prov.complete(model, request)
        except ModelError:
            raise
        except Exception as e:
            raise classify_error(model_id, e) from e
        return normalize_response(envelope, model_id)

    async def _wait_backoff(self) -> None:
        lo, hi = self._backoff
        delay = random.uniform(lo, hi) if hi > 0 else 0.0
        if delay > 0:
            await self._sleep(delay)

    async def execute(self, request: LLMRequest, ordering: Optional[Iterable[str] | str] = None) -> str:
        order = parse_ordering(ordering) if ordering is not None else list(self.ordering)
        errors: List[str] = []
        start = time.time()
        for healing in (False, True):
            if healing:
                logger.warning("cascade.self_heal cleared=%s", sorted(self.excluded))
                self.reset()
            for model_id in order:
                if model_id in self.excluded:
                    continue
                t0 = time.time()
                try:
                    text = await self._attempt(model_id, request)
                except ModelUnavailable as e:
                    self.excluded.add(model_id)
                    errors.append(str(e))
                    log_cascade_attempt(model_id, "unavailable", (time.time() - t0) * 1000, str(e))
                    continue
                except ModelThrottled as e:
                    self.excluded.add(model_id)
                    errors.append(str(e))
                    log_cascade_attempt(model_id, "throttled", (time.time() - t0) * 1000, str(e))
                    await self._wait_backoff()
                    continue
                except ModelError as e:
                    errors.append(str(e))
                    log_cascade_attempt(model_id, type(e).__name__, (time.time() - t0) * 1000, str(e))
                    continue
                self.last_model = model_id
                log_cascade_attempt(model_id, "ok", (time.time() - t0) * 1000)
                log_cascade_outcome({
                    "status": "ok", "model": model_id, "healed": healing,
                    "failures": len(errors), "elapsed_ms": int((time.time() - start) * 1000),
                })
                return text
            # only a fully excluded ordering earns the self-heal pass
            if not order or not all(m in self.excluded for m in order):
                break
        log_cascade_outcome({
            "status": "exhausted", "order": order, "excluded": sorted(self.excluded),
            "failures": len(errors), "elapsed_ms": int((time.time() - start) * 1000),
        })
        raise AllModelsExhausted(errors)


def parse_ordering(raw: Iterable[str] | str) -> List[str]:
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    out: List[str] = []
    for it in items:
        s = (it or "").strip()
        if s and s not in out:
            out.append(s)
    return out


class CascadeRegistry:
    """One CascadeClient per session key; exclusions never leak across sessions."""

    MAX_SESSIONS = 500

    def __init__(self, factory: Callable[[], CascadeClient] = CascadeClient):
        self._factory = factory
        self._clients: Dict[str, CascadeClient] = {}

    def for_session(self, key: Optional[str]) -> CascadeClient:
        k = (key or "").strip()
        if not k:
            # 키 없는 호출은 공유하지 않음 (요청 단위 client)
            return self._factory()
        client = self._clients.get(k)
        if client is None:
            client = self._factory()
            self._clients[k] = client
            self._evict_if_needed()
        return client

    def _evict_if_needed(self):
        if len(self._clients) > self.MAX_SESSIONS:
            # naive eviction: drop oldest 50
            for i, k in enumerate(list(self._clients.keys())):
                del self._clients[k]
                if i >= 49:
                    break
