from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

import pytest

# The app module builds its store from settings at import time.
os.environ.setdefault("STATE_DB_PATH", str(Path(tempfile.mkdtemp()) / "conversation_state.db"))
os.environ["OPENROUTER_API_KEY"] = ""


@pytest.fixture(scope="session")
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def reminder_chat_payload(fixtures_dir: Path) -> dict:
    return json.loads((fixtures_dir / "chat_reminder.json").read_text(encoding="utf-8"))


@pytest.fixture
def classifier_plan_payload(fixtures_dir: Path) -> dict:
    return json.loads((fixtures_dir / "classifier_plan.json").read_text(encoding="utf-8"))
