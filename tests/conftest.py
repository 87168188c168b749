"""
Pytest configuration and fixtures for Stackplan tests.
"""

import json
import sys
from pathlib import Path

import pytest

# Add the repository root to path for imports
# This allows `from stackplan.plan import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from stackplan.config import EnvironmentOverlay  # noqa: E402
from stackplan.generate import GenerateContext  # noqa: E402
from stackplan.source import SourceTree  # noqa: E402


@pytest.fixture
def make_app(tmp_path):
    """
    Write a project tree and return its root.

    Values may be strings (written as-is) or dicts/lists (written as JSON).
    """

    def _make(files: dict) -> Path:
        for rel, content in files.items():
            path = tmp_path / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            if not isinstance(content, str):
                content = json.dumps(content)
            path.write_text(content, encoding="utf-8")
        return tmp_path

    return _make


@pytest.fixture
def make_ctx(make_app):
    """Build a GenerateContext over a fresh tree, optionally bound to a provider."""

    def _make(files: dict, env: dict | None = None, provider: str | None = None) -> GenerateContext:
        ctx = GenerateContext(
            app=SourceTree(make_app(files)),
            env=EnvironmentOverlay.from_mapping(env),
        )
        if provider:
            ctx.bind_provider(provider)
        return ctx

    return _make


@pytest.fixture
def express_app():
    """Node project with a build script and a lock file."""
    return {
        "package.json": {
            "name": "web",
            "scripts": {"build": "tsc", "start": "node dist/index.js"},
            "dependencies": {"express": "^4.19.0"},
        },
        "package-lock.json": {"lockfileVersion": 3},
        "src/index.ts": "console.log('hi')\n",
    }


@pytest.fixture
def flask_app():
    """Flask project served by gunicorn."""
    return {
        "requirements.txt": "flask==3.0.0\ngunicorn==22.0.0\n",
        "app.py": "from flask import Flask\napp = Flask(__name__)\n",
    }
