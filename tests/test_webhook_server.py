from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

import dedicator.api.webhook as ws
from dedicator.config import ConfigError, PolicyConfig, ServerConfig

ONLY = "k8s.smp.io/only-dedicated-nodes"


def _review() -> Dict[str, Any]:
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "request": {
            "uid": "uid-1",
            "resource": {"group": "", "version": "v1", "resource": "pods"},
            "operation": "CREATE",
            "namespace": "teamA",
            "object": {
                "metadata": {"name": "web-1", "annotations": {ONLY: "true"}},
                "spec": {"tolerations": [], "nodeSelector": {"disk": "ssd"}},
            },
        },
    }


def test_healthz(fake_namespaces) -> None:
    ws.configure(ws.app, policy=PolicyConfig(), lookup=fake_namespaces({}))
    with TestClient(ws.app) as client:
        r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


@pytest.mark.parametrize("path", ["/", "/mutate"])
def test_mutate_returns_patched_review(fake_namespaces, path: str) -> None:
    lookup = fake_namespaces({"teamA": {ONLY: "annotation", "k8s.smp.io/dedicated": "gpu"}})
    ws.configure(ws.app, policy=PolicyConfig(), lookup=lookup)

    with TestClient(ws.app) as client:
        r = client.post(path, json=_review())

    assert r.status_code == 200
    resp = r.json()["response"]
    assert resp["uid"] == "uid-1"
    assert resp["allowed"] is True
    ops = json.loads(base64.b64decode(resp["patch"]))
    assert ops[-1] == {"op": "add", "path": "/spec/nodeSelector/k8s.smp.io~1dedicated", "value": "gpu"}
    assert lookup.calls == ["teamA"]


def test_mutate_rejects_non_json_content_type(fake_namespaces) -> None:
    ws.configure(ws.app, policy=PolicyConfig(), lookup=fake_namespaces({}))

    with TestClient(ws.app) as client:
        r = client.post("/", content=json.dumps(_review()), headers={"Content-Type": "text/plain"})

    assert r.status_code == 415


def test_mutate_garbage_body_yields_denied_review(fake_namespaces) -> None:
    ws.configure(ws.app, policy=PolicyConfig(), lookup=fake_namespaces({}))

    with TestClient(ws.app) as client:
        r = client.post("/", content=b"[]", headers={"Content-Type": "application/json; charset=utf-8"})

    assert r.status_code == 200
    assert r.json()["response"]["allowed"] is False


def test_startup_loads_policy_and_provider_from_env(monkeypatch) -> None:
    monkeypatch.setenv("NODE_TAINT_KEY", "pool")
    monkeypatch.delenv("IGNORE_PODS", raising=False)

    with TestClient(ws.app):
        assert ws.app.state.policy.taint_key == "pool"
        assert hasattr(ws.app.state.namespaces, "get_namespace")


def test_startup_fails_on_bad_policy(monkeypatch) -> None:
    monkeypatch.setenv("IGNORE_PODS", "broken")

    with pytest.raises(ConfigError):
        with TestClient(ws.app):
            pass


@pytest.fixture
def _restore_log_levels():
    loggers = [logging.getLogger(), logging.getLogger(ws.__name__)]
    saved = [lg.level for lg in loggers]
    yield
    for lg, level in zip(loggers, saved):
        lg.setLevel(level)


@pytest.mark.parametrize(
    "level, enabled, disabled",
    [("debug", logging.DEBUG, None), ("warning", logging.WARNING, logging.INFO)],
)
def test_run_applies_log_level_to_all_modules(monkeypatch, _restore_log_levels, level, enabled, disabled) -> None:
    # Simulate main.py having configured the root logger at import time.
    logging.basicConfig(level=logging.INFO)
    started = {}

    def _fake_uvicorn_run(app_, **kwargs):  # type: ignore[no-untyped-def]
        started.update(kwargs)

    monkeypatch.setattr("uvicorn.run", _fake_uvicorn_run)
    server = ServerConfig(host="127.0.0.1", port=8443, tls_cert_file=None, tls_key_file=None, log_level=level)

    ws.run(server, policy=PolicyConfig())

    assert started["log_level"] == level
    engine_logger = logging.getLogger("dedicator.core.patch")
    assert engine_logger.isEnabledFor(enabled)
    if disabled is not None:
        assert not logging.getLogger("dedicator.api.admission").isEnabledFor(disabled)
