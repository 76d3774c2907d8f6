from __future__ import annotations

from typing import List

from chat.core.models import Turn


def window_turns(turns: List[Turn], max_turns: int) -> List[Turn]:
    """Keep the instruction turn plus the last ``max_turns`` other turns.

    Nothing is trimmed until the transcript holds more than ``max_turns + 1``
    turns. Dropped turns are not kept anywhere.
    """
    if len(turns) <= max_turns + 1:
        return list(turns)

    instruction = turns[0]
    rest = turns[1:]
    return [instruction, *rest[-max_turns:]]
