from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

# Set env before any statement_intake imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.statement_intake_test.db")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", ".tmp_storage_test")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-key")


@pytest.fixture(autouse=True)
def _reset_db_and_storage() -> None:
    import statement_intake.models  # noqa: F401
    from statement_intake.core.db import engine
    from statement_intake.core.models import Base

    import statement_intake.core.storage as storage_mod

    storage_mod._storage = None

    storage_path = Path(os.environ["LOCAL_STORAGE_PATH"])
    if storage_path.exists():
        shutil.rmtree(storage_path)

    # Reset DB schema
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


class FakeModel:
    """Stands in for both extraction adapters; replays canned responses in order.

    The last response repeats once the list is exhausted. An Exception instance
    in the list is raised instead of returned.
    """

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    def _next(self, call: dict):
        from statement_intake.modules.extraction.llm import ModelResponse, ModelUsage

        self.calls.append(call)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return ModelResponse(text=item, usage=ModelUsage(input_tokens=100, output_tokens=50))

    def call_vision_model(
        self, image_bytes, *, mime_type, system_prompt, user_prompt, max_tokens=None
    ):
        return self._next(
            {"kind": "vision", "mime_type": mime_type, "bytes": image_bytes, "user": user_prompt}
        )

    def call_text_model(self, system_prompt, user_prompt, max_tokens=None):
        return self._next({"kind": "text", "system": system_prompt, "user": user_prompt})


@pytest.fixture
def fake_model():
    """Factory: fake_model(response, ...) -> (model, adapters)."""
    from statement_intake.modules.extraction.llm import ExtractionAdapters

    def _make(*responses):
        model = FakeModel(*responses)
        return model, ExtractionAdapters(vision=model, text=model)

    return _make
