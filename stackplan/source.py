"""
Read-only project tree access.

SourceTree is the only way providers touch the filesystem. Every access
checks the cancellation token first, and every I/O failure is surfaced
as a DetectionError rather than swallowed.

Usage:
    tree = SourceTree("/path/to/project", cancel=CancelToken(deadline_seconds=5))
    if tree.has_file("package.json"):
        manifest = tree.read_json("package.json")
"""

from __future__ import annotations

import json
import logging
import threading
import time
import tomllib
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Iterable

import yaml

from .errors import DetectionError, GenerationCancelled

logger = logging.getLogger(__name__)

# Directories never worth scanning for manifests
IGNORED_DIRS = frozenset({".git", "node_modules", "__pycache__", ".venv", "target"})

MAX_PROBE_WORKERS = 8


class CancelToken:
    """
    Cancellation signal shared between the caller and a generation pass.

    Fires when cancel() is called or when the optional deadline passes.
    """

    def __init__(self, deadline_seconds: float | None = None):
        self._event = threading.Event()
        self._deadline = (
            time.monotonic() + deadline_seconds if deadline_seconds is not None else None
        )

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise GenerationCancelled()


class SourceTree:
    """
    Read-only accessor over a project directory.

    All paths are POSIX-style and relative to the root. Listing results
    are sorted so that scans are deterministic.
    """

    def __init__(self, root: str | Path, cancel: CancelToken | None = None):
        self.root = Path(root)
        self.cancel = cancel or CancelToken()
        if not self.root.is_dir():
            raise DetectionError(f"Project root '{self.root}' is not a directory")

    def _path(self, rel: str) -> Path:
        self.cancel.raise_if_cancelled()
        return self.root / rel

    # ==================== Existence ====================

    def has_file(self, rel: str) -> bool:
        try:
            return self._path(rel).is_file()
        except OSError as e:
            raise DetectionError(f"Cannot stat '{rel}': {e}") from e

    def has_dir(self, rel: str) -> bool:
        try:
            return self._path(rel).is_dir()
        except OSError as e:
            raise DetectionError(f"Cannot stat '{rel}': {e}") from e

    def has_match(self, pattern: str) -> bool:
        return bool(self.find_files(pattern))

    def find_files(self, pattern: str) -> list[str]:
        """Return sorted relative paths of files matching a glob pattern."""
        self.cancel.raise_if_cancelled()
        matches: list[str] = []
        try:
            for path in self.root.glob(pattern):
                self.cancel.raise_if_cancelled()
                rel = path.relative_to(self.root)
                if IGNORED_DIRS.intersection(rel.parts[:-1]):
                    continue
                if path.is_file():
                    matches.append(rel.as_posix())
        except OSError as e:
            raise DetectionError(f"Cannot scan '{pattern}': {e}") from e
        return sorted(matches)

    def existing(self, candidates: Iterable[str]) -> frozenset[str]:
        """
        Probe several candidate files concurrently.

        Returns the set of candidates that exist. The result is a set, so
        it does not depend on which probe finishes first.
        """
        unique = sorted(set(candidates))
        if not unique:
            return frozenset()
        workers = min(MAX_PROBE_WORKERS, len(unique))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            found = pool.map(self.has_file, unique)
            return frozenset(name for name, hit in zip(unique, found) if hit)

    # ==================== Content ====================

    def read_text(self, rel: str) -> str:
        try:
            return self._path(rel).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise DetectionError(f"Cannot read '{rel}': {e}") from e

    def read_json(self, rel: str) -> Any:
        text = self.read_text(rel)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise DetectionError(f"Invalid JSON in '{rel}': {e}") from e

    def read_toml(self, rel: str) -> dict[str, Any]:
        text = self.read_text(rel)
        try:
            return tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise DetectionError(f"Invalid TOML in '{rel}': {e}") from e

    def read_yaml(self, rel: str) -> Any:
        text = self.read_text(rel)
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise DetectionError(f"Invalid YAML in '{rel}': {e}") from e

    def __repr__(self) -> str:
        return f"SourceTree(root='{self.root}')"
