"""
Pytest config.

Pins the repo root on sys.path so `import dedicator` and `import main` work whether
or not the project was pip-installed, and provides an in-memory Namespace lookup.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from dedicator.core.models import NamespaceSnapshot  # noqa: E402
from dedicator.providers.k8s_provider import NamespaceLookupError, NamespaceNotFound  # noqa: E402


class FakeNamespaces:
    """In-memory NamespaceLookup. Unknown names raise NamespaceNotFound."""

    def __init__(self, annotations_by_ns: Optional[Dict[str, Dict[str, str]]] = None, *, error: Optional[str] = None):
        self._annotations = annotations_by_ns or {}
        self._error = error
        self.calls: List[str] = []

    def get_namespace(self, name: str) -> NamespaceSnapshot:
        self.calls.append(name)
        if self._error:
            raise NamespaceLookupError(self._error)
        if name not in self._annotations:
            raise NamespaceNotFound(f"Namespace {name} not found")
        return NamespaceSnapshot(name=name, annotations=self._annotations[name])


@pytest.fixture
def fake_namespaces() -> type:
    return FakeNamespaces


@pytest.fixture(autouse=True)
def _reset_webhook_state():
    """The FastAPI app is module-level; keep policy/lookup from leaking between tests."""
    import dedicator.api.webhook as ws

    for attr in ("policy", "namespaces"):
        if hasattr(ws.app.state, attr):
            delattr(ws.app.state, attr)
    yield
    for attr in ("policy", "namespaces"):
        if hasattr(ws.app.state, attr):
            delattr(ws.app.state, attr)
