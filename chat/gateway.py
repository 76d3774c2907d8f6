from __future__ import annotations

from typing import Optional

from chat.core.transcript import TranscriptConfig, TranscriptManager
from chat.inference import InferenceBackend, build_backend
from chat.storage import KeyValueStore, build_store
from config.settings import Settings, get_settings


def build_transcript_manager(
    settings: Optional[Settings] = None,
    *,
    store: Optional[KeyValueStore] = None,
    backend: Optional[InferenceBackend] = None,
) -> TranscriptManager:
    settings = settings or get_settings()
    return TranscriptManager(
        store=store or build_store(settings),
        backend=backend or build_backend(settings),
        config=TranscriptConfig.from_settings(settings),
    )
