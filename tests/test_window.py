from chat.core.models import Role, Turn
from chat.core.window import window_turns


def _transcript(non_instruction: int) -> list:
    turns = [Turn(role=Role.INSTRUCTION, content="preamble")]
    for i in range(non_instruction):
        role = Role.USER if i % 2 == 0 else Role.ASSISTANT
        turns.append(Turn(role=role, content=f"t{i}"))
    return turns


def test_instruction_only_transcript_is_left_alone() -> None:
    turns = _transcript(0)
    assert window_turns(turns, 1) == turns


def test_exactly_n_plus_one_turns_is_not_trimmed() -> None:
    turns = _transcript(16)
    windowed = window_turns(turns, 16)
    assert len(windowed) == 17
    assert windowed == turns


def test_one_past_the_bound_drops_the_oldest_turn() -> None:
    turns = _transcript(17)
    windowed = window_turns(turns, 16)
    assert len(windowed) == 17
    assert windowed[0].role is Role.INSTRUCTION
    assert [t.content for t in windowed[1:]] == [f"t{i}" for i in range(1, 17)]


def test_eighteen_non_instruction_turns_drop_the_oldest_two() -> None:
    turns = _transcript(18)
    windowed = window_turns(turns, 16)
    assert len(windowed) == 17
    assert windowed[1].content == "t2"
    assert windowed[-1].content == "t17"


def test_window_returns_a_new_list() -> None:
    turns = _transcript(2)
    windowed = window_turns(turns, 16)
    windowed.append(Turn(role=Role.USER, content="extra"))
    assert len(turns) == 3
