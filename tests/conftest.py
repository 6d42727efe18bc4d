"""Shared pytest fixtures for CodeMapper tests."""

import sys
from pathlib import Path

# Ensure project root is on path so "codemapper" package is found
_root = Path(__file__).resolve().parent.parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import pytest
from fastapi.testclient import TestClient

from codemapper.config import Settings, get_settings
from codemapper.main import app


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the developer's .env: temp audit/DLQ, google provider with a fake key."""
    return Settings(
        _env_file=None,
        LLM_PROVIDER="google",
        API_KEY="test-key",
        AUDIT_LOG_PATH=str(tmp_path / "AUDIT.jsonl"),
        DLQ_PATH=str(tmp_path / "DLQ.jsonl"),
        STATE_FILE=str(tmp_path / "codemapper_state.json"),
        OUTPUT_FILE=str(tmp_path / "diagram.mmd"),
    )


@pytest.fixture
def write_tree(tmp_path: Path):
    """Create files under tmp_path/<name>: {"a/x.go": 10 * 1024, "b/z.py": "text"} (int = size in bytes)."""

    def _write(files: dict, name: str = "proj") -> Path:
        root = tmp_path / name
        root.mkdir(parents=True, exist_ok=True)
        for rel, content in files.items():
            p = root / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, int):
                p.write_text("x" * content, encoding="utf-8")
            else:
                p.write_text(content, encoding="utf-8")
        return root

    return _write


@pytest.fixture
def client(settings: Settings):
    """FastAPI TestClient with settings overridden and a clean session slot."""
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.session = None
    app.state.generate = None
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.session = None
    app.state.generate = None
