"""Session transcript lifecycle around a single inference call.

Each turn is a read-modify-write against the key-value store: load the stored
transcript, seed it with the instruction turn when empty, append the user
turn, window it, ask the backend for a reply, append that and write the whole
thing back. Nothing is written unless inference succeeds.

There is no locking across requests. Two concurrent turns for the same
session both read the same transcript and the last one to write wins.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from chat.core.errors import InferenceError, ValidationError
from chat.core.models import Role, Turn, TurnResult, decode_transcript, encode_transcript, to_messages
from chat.core.prompt import SYSTEM_PROMPT
from chat.core.window import window_turns
from chat.inference import InferenceBackend, InferenceResult
from chat.storage import KeyValueStore


logger = logging.getLogger("studybuddy.transcript")

INVALID_SESSION_ID = "Missing or invalid sessionId"
INVALID_MESSAGE = "Missing or invalid message"


class TranscriptConfig(BaseModel):
    """Fixed per-deployment knobs for the transcript manager."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model: str = Field("@cf/meta/llama-3.3-70b-instruct-fp8-fast", description="Model identifier passed to the backend")
    max_tokens: int = Field(512, gt=0)
    temperature: float = 0.4
    max_history_turns: int = Field(16, ge=1, description="Non-instruction turns kept in the window")
    ttl_seconds: int = Field(60 * 60 * 24 * 7, gt=0, description="Sliding expiry, reset on every write")
    key_prefix: str = "session:"
    system_prompt: str = Field(SYSTEM_PROMPT.strip(), min_length=1)
    empty_reply_sentinel: str = Field("[no response]", min_length=1)

    @classmethod
    def from_settings(cls, settings: Any) -> "TranscriptConfig":
        return cls(
            model=settings.model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            max_history_turns=settings.max_history_turns,
            ttl_seconds=settings.session_ttl_seconds,
        )


class TranscriptManager:
    def __init__(
        self,
        store: KeyValueStore,
        backend: InferenceBackend,
        config: Optional[TranscriptConfig] = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.config = config or TranscriptConfig()

    def close(self) -> None:
        for collaborator in (self.store, self.backend):
            close = getattr(collaborator, "close", None)
            if callable(close):
                close()

    def session_key(self, session_id: str) -> str:
        return f"{self.config.key_prefix}{session_id}"

    def load(self, session_id: str) -> List[Turn]:
        """Return the stored transcript, or an empty one if missing or unreadable."""
        decoded = decode_transcript(self.store.get(self.session_key(session_id)))
        if decoded.status == "corrupt":
            logger.warning(
                "Discarding unreadable transcript for session=%s: %s",
                session_id,
                decoded.reason,
            )
        return decoded.turns

    def handle_turn(self, session_id: Any, user_text: Any) -> TurnResult:
        if not isinstance(session_id, str) or not session_id:
            raise ValidationError(INVALID_SESSION_ID)
        if not isinstance(user_text, str) or not user_text.strip():
            raise ValidationError(INVALID_MESSAGE)

        history = self.load(session_id)
        if not history:
            history.append(Turn(role=Role.INSTRUCTION, content=self.config.system_prompt))

        history.append(Turn(role=Role.USER, content=user_text.strip()))
        history = window_turns(history, self.config.max_history_turns)

        try:
            result = self.backend.run(
                self.config.model,
                messages=to_messages(history),
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
        except Exception as exc:
            raise InferenceError(f"Inference failed for session {session_id}: {exc}") from exc

        reply = self._reply_text(session_id, result)
        history.append(Turn(role=Role.ASSISTANT, content=reply))

        self.store.put(
            self.session_key(session_id),
            encode_transcript(history),
            ttl_seconds=self.config.ttl_seconds,
        )
        return TurnResult(reply=reply, history=history)

    def _reply_text(self, session_id: str, result: Optional[InferenceResult]) -> str:
        text = getattr(result, "response_text", None)
        if isinstance(text, str) and text.strip():
            return text
        logger.warning("Backend returned no usable text for session=%s", session_id)
        return self.config.empty_reply_sentinel
