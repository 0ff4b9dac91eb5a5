"""Uniform gateway over the local (Ollama) and remote (Gemini) model backends."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Literal, Optional

import httpx

from ledgee.config import ExtractionConfig
from ledgee.extraction.prompts import IMAGE_CONTEXT_PROMPT
from ledgee.models.invoice import ExtractionRequest

logger = logging.getLogger(__name__)

AVAILABLE = "available"
AFTER_DOWNLOAD = "after-download"
NOT_SUPPORTED = "no"

_HTTP_TIMEOUT = httpx.Timeout(120.0, connect=5.0)
_PROBE_TIMEOUT = 5.0


class ExtractionError(RuntimeError):
    """Caller-facing failure of an extraction stage."""


class BackendUnavailableError(ExtractionError):
    """The selected backend reported a non-ready availability status."""

    def __init__(self, status: str, message: str | None = None) -> None:
        super().__init__(message or f"Model backend not ready (status: {status}).")
        self.status = status


class GatewayTimeoutError(ExtractionError):
    """A prompt did not complete within its caller-supplied timeout."""


class BackendError(ExtractionError):
    """The backend answered with an error or an unusable payload."""


OutcomeKind = Literal["ok", "timed_out", "unavailable", "error"]


@dataclass(frozen=True)
class PromptOutcome:
    """Single observed result of one prompt call."""

    kind: OutcomeKind
    text: str = ""
    reason: Optional[str] = None

    @classmethod
    def ok(cls, text: str) -> "PromptOutcome":
        return cls(kind="ok", text=text)

    @classmethod
    def timed_out(cls) -> "PromptOutcome":
        return cls(kind="timed_out", reason="timeout")

    @classmethod
    def unavailable(cls, status: str) -> "PromptOutcome":
        return cls(kind="unavailable", reason=status)

    @classmethod
    def error(cls, message: str) -> "PromptOutcome":
        return cls(kind="error", reason=message)

    @property
    def is_ok(self) -> bool:
        return self.kind == "ok"


def normalize_response_text(payload: Any) -> str:
    """Flatten any backend response shape into plain text."""

    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, list):
        parts = [
            part if isinstance(part, str) else (part or {}).get("text") or ""
            for part in payload
            if isinstance(part, (str, dict)) or part is None
        ]
        return "\n".join(part for part in parts if part)
    if not isinstance(payload, dict):
        return str(payload)

    message = payload.get("message")
    if isinstance(message, dict) and message.get("content"):
        return str(message["content"])

    candidates = payload.get("candidates")
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
        content = candidates[0].get("content")
        if isinstance(content, dict):
            text = normalize_response_text(content.get("parts") or [])
            if text:
                return text

    output = payload.get("output")
    if isinstance(output, list) and output:
        chunks: List[str] = []
        for block in output:
            if not isinstance(block, dict) or not isinstance(block.get("content"), list):
                continue
            for part in block["content"]:
                if not isinstance(part, dict):
                    continue
                value = part.get("text") or part.get("data") or ""
                if value:
                    chunks.append(str(value))
        if chunks:
            return "\n".join(chunks)

    if payload.get("output_text"):
        return str(payload["output_text"])
    if payload.get("text"):
        return str(payload["text"])

    try:
        return json.dumps(payload)
    except (TypeError, ValueError):
        return ""


def _encode_image(image: ExtractionRequest) -> str:
    return base64.b64encode(image.content).decode("ascii")


class BackendSession(ABC):
    """One conversation with a backend; history only grows on completed prompts."""

    def __init__(self, system_prompt: str, image: Optional[ExtractionRequest]) -> None:
        self._system_prompt = system_prompt
        self._image = image
        self._image_sent = False

    @abstractmethod
    async def prompt(self, user_prompt: str, *, response_schema: Optional[Dict[str, Any]] = None) -> Any:
        """Send ``user_prompt`` and return the raw backend payload."""

    @abstractmethod
    async def aclose(self) -> None:
        """Release the resources held by the session."""


class ModelBackend(ABC):
    """A generative model reachable through the gateway."""

    name: str

    @property
    @abstractmethod
    def label(self) -> str:
        """Backend-identifying label recorded on results."""

    @abstractmethod
    async def availability(self) -> str:
        """Return ``available``, ``after-download``, ``no`` or another status string."""

    @abstractmethod
    async def open_session(
        self, system_prompt: str, image: Optional[ExtractionRequest]
    ) -> BackendSession:
        """Create a conversation seeded with the system prompt and optional image."""


class _OllamaSession(BackendSession):
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        model: str,
        temperature: float,
        system_prompt: str,
        image: Optional[ExtractionRequest],
    ) -> None:
        super().__init__(system_prompt, image)
        self._client = client
        self._model = model
        self._temperature = temperature
        self._messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]

    def _user_turn(self, user_prompt: str) -> Dict[str, Any]:
        if self._image is not None and not self._image_sent:
            return {
                "role": "user",
                "content": f"{IMAGE_CONTEXT_PROMPT}\n\n{user_prompt}",
                "images": [_encode_image(self._image)],
            }
        return {"role": "user", "content": user_prompt}

    async def prompt(self, user_prompt: str, *, response_schema: Optional[Dict[str, Any]] = None) -> Any:
        turn = self._user_turn(user_prompt)
        payload: Dict[str, Any] = {
            "model": self._model,
            "messages": [*self._messages, turn],
            "stream": False,
            "options": {"temperature": self._temperature, "top_k": 1},
        }
        if response_schema is not None:
            payload["format"] = response_schema

        response = await self._client.post("/api/chat", json=payload)
        if response.status_code >= 400:
            raise BackendError(
                f"Ollama error: {response.status_code} {response.text[:200]}"
            )
        body = response.json()
        if not isinstance(body, dict):
            raise BackendError("Ollama response was not a JSON object.")
        message = body.get("message")
        if not isinstance(message, dict) or not isinstance(message.get("content"), str):
            raise BackendError("Ollama response did not include content.")
        if not message["content"].strip():
            raise BackendError("Ollama response did not include content.")

        self._messages.append(turn)
        self._messages.append({"role": "assistant", "content": message["content"]})
        self._image_sent = True
        return body

    async def aclose(self) -> None:
        await self._client.aclose()


class LocalBackend(ModelBackend):
    """Multimodal model served by a local Ollama runtime."""

    name = "local"

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        temperature: float = 0.1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._temperature = max(0.0, float(temperature))
        self._transport = transport

    @property
    def label(self) -> str:
        return f"ollama:{self._model}"

    def _client(self, timeout: httpx.Timeout | float = _HTTP_TIMEOUT) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self._base_url, timeout=timeout, transport=self._transport)

    def _has_model(self, names: List[str]) -> bool:
        wanted = self._model
        for name in names:
            if name == wanted or name == f"{wanted}:latest":
                return True
            if ":" not in wanted and name.split(":", 1)[0] == wanted:
                return True
        return False

    async def availability(self) -> str:
        try:
            async with self._client(_PROBE_TIMEOUT) as client:
                response = await client.get("/api/tags")
        except httpx.TransportError as exc:
            logger.warning("Local model runtime unreachable at %s: %s", self._base_url, exc)
            return NOT_SUPPORTED
        if response.status_code >= 400:
            logger.warning("Local model runtime returned HTTP %s", response.status_code)
            return "unknown"
        try:
            models = response.json().get("models") or []
        except ValueError:
            return "unknown"
        names = [str(entry.get("name") or entry.get("model") or "") for entry in models]
        return AVAILABLE if self._has_model(names) else AFTER_DOWNLOAD

    async def open_session(
        self, system_prompt: str, image: Optional[ExtractionRequest]
    ) -> BackendSession:
        return _OllamaSession(
            self._client(),
            model=self._model,
            temperature=self._temperature,
            system_prompt=system_prompt,
            image=image,
        )


class _GeminiSession(BackendSession):
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        model: str,
        api_key: str,
        temperature: float,
        system_prompt: str,
        image: Optional[ExtractionRequest],
    ) -> None:
        super().__init__(system_prompt, image)
        self._client = client
        self._model = model
        self._api_key = api_key
        self._temperature = temperature
        self._contents: List[Dict[str, Any]] = []

    def _user_turn(self, user_prompt: str) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = []
        if self._image is not None and not self._image_sent:
            parts.append({"text": IMAGE_CONTEXT_PROMPT})
            parts.append(
                {
                    "inline_data": {
                        "mime_type": self._image.mime_type or "image/jpeg",
                        "data": _encode_image(self._image),
                    }
                }
            )
        parts.append({"text": user_prompt})
        return {"role": "user", "parts": parts}

    async def prompt(self, user_prompt: str, *, response_schema: Optional[Dict[str, Any]] = None) -> Any:
        turn = self._user_turn(user_prompt)
        generation_config: Dict[str, Any] = {"temperature": self._temperature, "topK": 1}
        if response_schema is not None:
            generation_config["responseMimeType"] = "application/json"
            generation_config["responseJsonSchema"] = response_schema
        payload = {
            "systemInstruction": {"parts": [{"text": self._system_prompt}]},
            "contents": [*self._contents, turn],
            "generationConfig": generation_config,
        }

        response = await self._client.post(
            f"/models/{self._model}:generateContent",
            params={"key": self._api_key},
            json=payload,
        )
        if response.status_code in (401, 403):
            raise BackendUnavailableError(
                "unauthorized", f"Gemini API rejected the API key ({response.status_code})."
            )
        if response.status_code >= 400:
            raise BackendError(
                f"Gemini API error: {response.status_code} {response.text[:200]}"
            )
        body = response.json()
        if not isinstance(body, dict):
            raise BackendError("Gemini API response was not a JSON object.")
        if not isinstance(body.get("candidates"), list) or not body["candidates"]:
            raise BackendError("No response generated from Gemini API")

        self._contents.append(turn)
        self._contents.append({"role": "model", "parts": [{"text": normalize_response_text(body)}]})
        self._image_sent = True
        return body

    async def aclose(self) -> None:
        await self._client.aclose()


class RemoteBackend(ModelBackend):
    """Hosted Gemini model; every prompt is an independent HTTPS request."""

    name = "remote"

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: Optional[str],
        temperature: float = 0.1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._api_key = (api_key or "").strip()
        self._temperature = max(0.0, float(temperature))
        self._transport = transport

    @property
    def label(self) -> str:
        return f"gemini:{self._model}"

    async def availability(self) -> str:
        return AVAILABLE if self._api_key else "missing-api-key"

    async def open_session(
        self, system_prompt: str, image: Optional[ExtractionRequest]
    ) -> BackendSession:
        client = httpx.AsyncClient(
            base_url=self._base_url, timeout=_HTTP_TIMEOUT, transport=self._transport
        )
        return _GeminiSession(
            client,
            model=self._model,
            api_key=self._api_key,
            temperature=self._temperature,
            system_prompt=system_prompt,
            image=image,
        )


class GatewaySession:
    """Conversation handle whose every call yields exactly one PromptOutcome."""

    def __init__(self, session: BackendSession, label: str) -> None:
        self._session = session
        self._label = label

    async def send(
        self,
        user_prompt: str,
        *,
        timeout: float,
        response_schema: Optional[Dict[str, Any]] = None,
    ) -> PromptOutcome:
        try:
            # wait_for cancels the request when the timeout fires, so a late reply is never seen.
            raw = await asyncio.wait_for(
                self._session.prompt(user_prompt, response_schema=response_schema),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.debug("Prompt on %s timed out after %.1fs", self._label, timeout)
            return PromptOutcome.timed_out()
        except BackendUnavailableError as exc:
            return PromptOutcome.unavailable(exc.status)
        except (ExtractionError, httpx.HTTPError, ValueError) as exc:
            logger.debug("Prompt on %s failed: %s", self._label, exc)
            return PromptOutcome.error(str(exc) or exc.__class__.__name__)
        return PromptOutcome.ok(normalize_response_text(raw))


class ModelGateway:
    """Send (system prompt, image, user prompt) to one configured backend."""

    def __init__(self, backend: ModelBackend) -> None:
        self._backend = backend

    @property
    def label(self) -> str:
        return self._backend.label

    @property
    def backend_name(self) -> str:
        return self._backend.name

    async def availability(self) -> str:
        return await self._backend.availability()

    @asynccontextmanager
    async def session(
        self, system_prompt: str, image: Optional[ExtractionRequest] = None
    ) -> AsyncIterator[GatewaySession]:
        backend_session = await self._backend.open_session(system_prompt, image)
        logger.debug("Opened %s session", self.label)
        try:
            yield GatewaySession(backend_session, self.label)
        finally:
            await backend_session.aclose()
            logger.debug("Closed %s session", self.label)

    async def send(
        self,
        system_prompt: str,
        image: Optional[ExtractionRequest],
        user_prompt: str,
        *,
        timeout: float,
        response_schema: Optional[Dict[str, Any]] = None,
    ) -> PromptOutcome:
        async with self.session(system_prompt, image) as session:
            return await session.send(
                user_prompt, timeout=timeout, response_schema=response_schema
            )


def build_gateway(
    config: ExtractionConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ModelGateway:
    """Construct the gateway for the backend selected in ``config``."""

    backend: ModelBackend
    if config.backend == "remote":
        backend = RemoteBackend(
            base_url=config.remote_base_url,
            model=config.remote_model,
            api_key=config.api_key,
            temperature=config.temperature,
            transport=transport,
        )
    else:
        backend = LocalBackend(
            base_url=config.local_base_url,
            model=config.local_model,
            temperature=config.temperature,
            transport=transport,
        )
    return ModelGateway(backend)


__all__ = [
    "AFTER_DOWNLOAD",
    "AVAILABLE",
    "NOT_SUPPORTED",
    "BackendError",
    "BackendSession",
    "BackendUnavailableError",
    "ExtractionError",
    "GatewaySession",
    "GatewayTimeoutError",
    "LocalBackend",
    "ModelBackend",
    "ModelGateway",
    "PromptOutcome",
    "RemoteBackend",
    "build_gateway",
    "normalize_response_text",
]
