from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
from urllib.parse import quote

import httpx
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import BaseModel

from chat.core.errors import InferenceError
from chat.storage import CLOUDFLARE_API_BASE


logger = logging.getLogger("studybuddy.inference")


class InferenceResult(BaseModel):
    response_text: Optional[str] = None


class InferenceBackend(Protocol):
    def run(
        self,
        model: str,
        *,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float,
    ) -> InferenceResult: ...


def to_lc_messages(messages: List[Dict[str, str]]) -> List[BaseMessage]:
    converted: List[BaseMessage] = []
    for item in messages or []:
        role = (item.get("role") or "").lower()
        content = item.get("content") or ""
        if not content:
            continue
        if role == "system":
            converted.append(SystemMessage(content=content))
        elif role in ("user", "human"):
            converted.append(HumanMessage(content=content))
        elif role in ("assistant", "ai"):
            converted.append(AIMessage(content=content))
        else:
            # Default unknown to HumanMessage for safety
            converted.append(HumanMessage(content=content))
    return converted


def _message_text(content: Any) -> Optional[str]:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text") or "")
        return "".join(parts)
    return None


ChatModelFactory = Callable[[str, int, float], BaseChatModel]


class GeminiBackend:
    """Google Gemini through langchain-google-genai."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = 30.0,
        chat_model_factory: Optional[ChatModelFactory] = None,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._factory = chat_model_factory or self._default_factory
        self._models: Dict[Tuple[str, int, float], BaseChatModel] = {}
        self._lock = threading.Lock()

    def _default_factory(self, model: str, max_tokens: int, temperature: float) -> BaseChatModel:
        return ChatGoogleGenerativeAI(
            model=model,
            google_api_key=self._api_key,
            temperature=temperature,
            max_output_tokens=max_tokens,
            timeout=self._timeout,
        )

    def _chat_model(self, model: str, max_tokens: int, temperature: float) -> BaseChatModel:
        key = (model, max_tokens, temperature)
        with self._lock:
            if key not in self._models:
                self._models[key] = self._factory(model, max_tokens, temperature)
            return self._models[key]

    def run(
        self,
        model: str,
        *,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float,
    ) -> InferenceResult:
        llm = self._chat_model(model, max_tokens, temperature)
        result = llm.invoke(to_lc_messages(messages))
        return InferenceResult(response_text=_message_text(getattr(result, "content", None)))


class WorkersAIBackend:
    """Cloudflare Workers AI through its REST endpoint."""

    def __init__(
        self,
        account_id: str,
        api_token: str,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._base = f"{CLOUDFLARE_API_BASE}/accounts/{account_id}/ai/run"
        self._headers = {"Authorization": f"Bearer {api_token}"}
        self._client = client or httpx.Client(timeout=timeout)

    def run(
        self,
        model: str,
        *,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float,
    ) -> InferenceResult:
        payload = {
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        try:
            response = self._client.post(
                f"{self._base}/{quote(model, safe='@/')}",
                json=payload,
                headers=self._headers,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise InferenceError(f"Workers AI call failed: {exc}") from exc
        except ValueError as exc:
            raise InferenceError(f"Workers AI returned a non-JSON body: {exc}") from exc

        result = data.get("result") if isinstance(data, dict) else None
        text = result.get("response") if isinstance(result, dict) else None
        return InferenceResult(response_text=text if isinstance(text, str) else None)

    def close(self) -> None:
        self._client.close()


def build_backend(settings) -> InferenceBackend:
    if settings.inference_provider == "gemini":
        if not settings.google_api_key:
            raise RuntimeError(
                "GOOGLE_API_KEY not set. Please configure it in environment or .env"
            )
        logger.info("Using Gemini backend: model=%s", settings.gemini_model)
        return GeminiBackend(settings.google_api_key, timeout=settings.inference_timeout_seconds)

    if not settings.cloudflare_account_id or not settings.cloudflare_api_token:
        raise RuntimeError(
            "CLOUDFLARE_ACCOUNT_ID and CLOUDFLARE_API_TOKEN must be set for Workers AI"
        )
    logger.info("Using Workers AI backend: model=%s", settings.workers_ai_model)
    return WorkersAIBackend(
        settings.cloudflare_account_id,
        settings.cloudflare_api_token,
        timeout=settings.inference_timeout_seconds,
    )
