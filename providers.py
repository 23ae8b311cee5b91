"""
Generative text providers.

Two envelopes are supported behind one capability:
- ChatCompletionProvider: OpenAI-compatible /v1/chat/completions
- GenerateContentProvider: Gemini /v1beta/models/{model}:generateContent

Both return RawResult and raise the same error types, so the decision
producer never looks at provider-specific field paths.
"""
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from errors import MissingCredentials, ModelNotFound, ProviderHttpError, RateLimited
from settings import Settings

logger = logging.getLogger(__name__)

_QUOTA_MESSAGE = re.compile(
    r"quota|rate[\s_-]?limit|resource[\s_]exhausted|too\s+many\s+requests", re.I
)
_RETRY_AFTER_PATTERNS = [
    re.compile(r"retry\s+in\s+(\d+(?:\.\d+)?)\s*(ms|s|sec|secs|seconds?)?\b", re.I),
    re.compile(r"try\s+again\s+in\s+(\d+(?:\.\d+)?)\s*(ms|s|sec|secs|seconds?)?\b", re.I),
    re.compile(r"\"?retryDelay\"?\s*[:=]\s*\"?(\d+(?:\.\d+)?)s", re.I),
]


@dataclass(frozen=True)
class RawResult:
    text: str
    status: int
    provider: str
    model: str
    upstream_calls: int = 1


def extract_retry_after(message: str, headers: Optional[Mapping[str, str]] = None) -> Optional[int]:
    """Seconds to wait before retrying, from a Retry-After header or the error text."""
    if headers:
        header = (headers.get("retry-after") or "").strip()
        if header.isdigit():
            return max(1, int(header))
    for rx in _RETRY_AFTER_PATTERNS:
        m = rx.search(message or "")
        if not m:
            continue
        value = float(m.group(1))
        unit = m.group(2) if m.lastindex and m.lastindex >= 2 else None
        if unit and unit.lower() == "ms":
            value = value / 1000.0
        return max(1, math.ceil(value))
    return None


def _safe_json(resp: httpx.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_message(data: Dict[str, Any], resp: httpx.Response) -> str:
    err = data.get("error")
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    if isinstance(err, str):
        return err
    return resp.text or ""


class GenerationProvider(ABC):
    name = "base"
    key_env = ""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        temperature: float = 0.2,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.timeout = timeout
        self._transport = transport
        self._discovered = False

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    # ----- provider specifics -----
    @abstractmethod
    def _build_request(self, system: str, user: str) -> Tuple[str, Dict[str, str], Dict[str, str], Dict[str, Any]]:
        """Return (url, params, headers, json body)."""

    @abstractmethod
    def _extract_text(self, data: Dict[str, Any]) -> str:
        ...

    @abstractmethod
    def _is_model_not_found(self, status: int, data: Dict[str, Any], message: str) -> bool:
        ...

    @abstractmethod
    async def _list_models(self) -> List[str]:
        """Model ids usable for generation, best candidates first."""

    # ----- shared flow -----
    async def send(self, system: str, user: str, allow_fallback: bool = True) -> RawResult:
        """One generation. A model-not-found fallback re-sends once and reports upstream_calls=2."""
        if not self.configured:
            raise MissingCredentials(f"{self.key_env} missing")
        try:
            return await self._send_once(system, user)
        except ModelNotFound:
            if self._discovered or not allow_fallback:
                raise
            self._discovered = True
            fallback = await self._discover_model()
            if not fallback:
                raise
            logger.warning("%s model %r not found, falling back to %r", self.name, self.model, fallback)
            self.model = fallback
            result = await self._send_once(system, user)
            return replace(result, upstream_calls=2)

    async def _discover_model(self) -> Optional[str]:
        try:
            candidates = await self._list_models()
        except ProviderHttpError as e:
            logger.warning("%s model discovery failed: %s", self.name, e.reason)
            return None
        for candidate in candidates:
            if candidate != self.model:
                return candidate
        return None

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderHttpError("AI request timed out", status=504) from e
        except httpx.HTTPError as e:
            raise ProviderHttpError("AI request failed", status=503) from e

    async def _send_once(self, system: str, user: str) -> RawResult:
        url, params, headers, body = self._build_request(system, user)
        resp = await self._request("POST", url, params=params, headers=headers, json=body)
        data = _safe_json(resp)
        if resp.status_code >= 400:
            raise self._classify(resp, data)
        return RawResult(
            text=self._extract_text(data).strip(),
            status=resp.status_code,
            provider=self.name,
            model=self.model,
        )

    def _classify(self, resp: httpx.Response, data: Dict[str, Any]) -> ProviderHttpError:
        status = resp.status_code
        message = _error_message(data, resp)
        if status == 429 or _QUOTA_MESSAGE.search(message):
            retry_after = extract_retry_after(f"{message}\n{resp.text}", resp.headers)
            return RateLimited(
                "Rate limited by AI provider", status=429, retry_after_seconds=retry_after
            )
        if self._is_model_not_found(status, data, message):
            return ModelNotFound(f"Model {self.model} not found", status=404)
        if status in (401, 403):
            return ProviderHttpError("AI credentials rejected", status=status)
        return ProviderHttpError(f"AI request failed (HTTP {status})", status=status)

    def describe(self) -> Dict[str, Any]:
        return {"configured": self.configured, "model": self.model, "baseUrl": self.base_url}


# =========================
# OpenAI-compatible chat completions
# =========================
class ChatCompletionProvider(GenerationProvider):
    name = "openai"
    key_env = "OPENAI_API_KEY"
    preferred_models = ("gpt-4o-mini", "gpt-4.1-mini", "gpt-4o", "gpt-3.5-turbo")

    def _build_request(self, system, user):
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        body = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        return f"{self.base_url}/v1/chat/completions", {}, headers, body

    def _extract_text(self, data):
        choices = data.get("choices") or []
        if not choices:
            return ""
        content = (choices[0].get("message") or {}).get("content")
        if isinstance(content, list):
            return "".join(str(p.get("text", "")) for p in content if isinstance(p, dict))
        return content if isinstance(content, str) else ""

    def _is_model_not_found(self, status, data, message):
        err = data.get("error")
        code = err.get("code") if isinstance(err, dict) else None
        if code == "model_not_found" or status == 404:
            return True
        return status == 400 and bool(re.search(r"model\b.*\b(does not exist|not found)", message, re.I))

    async def _list_models(self):
        resp = await self._request(
            "GET", f"{self.base_url}/v1/models", headers={"Authorization": f"Bearer {self.api_key}"}
        )
        if resp.status_code >= 400:
            raise ProviderHttpError(f"Model listing failed (HTTP {resp.status_code})", status=resp.status_code)
        ids = [str(m.get("id")) for m in _safe_json(resp).get("data") or [] if isinstance(m, dict) and m.get("id")]
        ranked = [m for m in self.preferred_models if m in ids]
        ranked += sorted(i for i in ids if i.startswith("gpt-") and i not in ranked)
        return ranked


# =========================
# Gemini generateContent
# =========================
class GenerateContentProvider(GenerationProvider):
    name = "gemini"
    key_env = "GEMINI_API_KEY"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.model = self.model.split("/", 1)[1] if self.model.startswith("models/") else self.model

    def _build_request(self, system, user):
        body = {
            "systemInstruction": {"parts": [{"text": system}]},
            "contents": [{"role": "user", "parts": [{"text": user}]}],
            "generationConfig": {"temperature": self.temperature},
        }
        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        return url, {"key": self.api_key}, {"Content-Type": "application/json"}, body

    def _extract_text(self, data):
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))

    def _is_model_not_found(self, status, data, message):
        if status == 404:
            return True
        return status == 400 and bool(re.search(r"model\b.*\bnot\s+(found|supported)", message, re.I))

    async def _list_models(self):
        resp = await self._request("GET", f"{self.base_url}/v1beta/models", params={"key": self.api_key})
        if resp.status_code >= 400:
            raise ProviderHttpError(f"Model listing failed (HTTP {resp.status_code})", status=resp.status_code)
        names: List[str] = []
        for m in _safe_json(resp).get("models") or []:
            if not isinstance(m, dict):
                continue
            if "generateContent" not in (m.get("supportedGenerationMethods") or []):
                continue
            name = str(m.get("name", ""))
            names.append(name.split("/", 1)[1] if name.startswith("models/") else name)
        flash = [n for n in names if "flash" in n]
        pro = [n for n in names if "pro" in n and n not in flash]
        rest = [n for n in names if n not in flash and n not in pro]
        return flash + pro + rest


def build_provider(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> GenerationProvider:
    common = dict(temperature=settings.ai_temperature, timeout=settings.ai_timeout_seconds, transport=transport)
    if settings.ai_provider == "gemini":
        return GenerateContentProvider(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            **common,
        )
    return ChatCompletionProvider(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        **common,
    )
