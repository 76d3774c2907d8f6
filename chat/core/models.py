"""Conversation turns and the stored transcript format."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError


class Role(str, Enum):
    INSTRUCTION = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    """One utterance in a conversation. Never edited once created."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    role: Role
    content: str = Field(..., min_length=1)


class TurnResult(BaseModel):
    reply: str
    history: List[Turn]


_TRANSCRIPT = TypeAdapter(List[Turn])


@dataclass(frozen=True)
class DecodedTranscript:
    """Outcome of reading a stored transcript.

    ``status`` is ``"ok"`` when the value decoded cleanly, ``"absent"`` when
    nothing was stored and ``"corrupt"`` when a value was stored but could not
    be used. Only ``"ok"`` carries turns; ``reason`` explains ``"corrupt"``.
    """

    status: Literal["ok", "absent", "corrupt"]
    turns: List[Turn] = field(default_factory=list)
    reason: Optional[str] = None


def _structure_problem(turns: List[Turn]) -> Optional[str]:
    if not turns:
        return None
    if turns[0].role is not Role.INSTRUCTION:
        return "first turn is not the instruction turn"
    if any(turn.role is Role.INSTRUCTION for turn in turns[1:]):
        return "more than one instruction turn"
    return None


def decode_transcript(raw: Optional[Union[str, bytes]]) -> DecodedTranscript:
    """Decode a stored value without raising; unusable values come back as corrupt."""
    if raw is None or raw == "" or raw == b"":
        return DecodedTranscript(status="absent")

    try:
        turns = _TRANSCRIPT.validate_json(raw)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        return DecodedTranscript(
            status="corrupt",
            reason=f"{first.get('type')}: {first.get('msg')}",
        )

    problem = _structure_problem(turns)
    if problem:
        return DecodedTranscript(status="corrupt", reason=problem)
    return DecodedTranscript(status="ok", turns=turns)


def encode_transcript(turns: List[Turn]) -> str:
    return _TRANSCRIPT.dump_json(turns).decode("utf-8")


def to_messages(turns: List[Turn]) -> List[Dict[str, str]]:
    return [{"role": turn.role.value, "content": turn.content} for turn in turns]
