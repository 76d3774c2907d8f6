from __future__ import annotations

import pytest

from chat.core.transcript import TranscriptConfig, TranscriptManager
from tests.fakes import RecordingStore, ScriptedBackend


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def config() -> TranscriptConfig:
    return TranscriptConfig(system_prompt="Be a study buddy.")


@pytest.fixture
def manager(store: RecordingStore, backend: ScriptedBackend, config: TranscriptConfig) -> TranscriptManager:
    return TranscriptManager(store=store, backend=backend, config=config)
