"""
Mutating admission webhook server.

Receives AdmissionReview requests from the API server for Pod creation and answers
with an optional JSON patch that pins the Pod to its namespace's dedicated nodes.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from dedicator.api.admission import handle_review
from dedicator.config import PolicyConfig, ServerConfig, load_policy_config
from dedicator.providers.k8s_provider import NamespaceLookup, get_k8s_provider

logger = logging.getLogger(__name__)

app = FastAPI(title="Dedicated nodes admission webhook")


def configure(
    app_: FastAPI, *, policy: Optional[PolicyConfig] = None, lookup: Optional[NamespaceLookup] = None
) -> None:
    """Attach the policy and Namespace lookup the handlers use. Unset values are filled at startup."""
    if policy is not None:
        app_.state.policy = policy
    if lookup is not None:
        app_.state.namespaces = lookup


@app.on_event("startup")
def _startup_load_policy() -> None:
    # ConfigError propagates: a webhook with an unusable policy must not start serving.
    if getattr(app.state, "policy", None) is None:
        app.state.policy = load_policy_config()
    if getattr(app.state, "namespaces", None) is None:
        app.state.namespaces = get_k8s_provider()

    policy: PolicyConfig = app.state.policy
    logger.info(
        "Policy: taint_key=%s node_label_key=%s ns_override=%s ns_only_dedicated=%s pod_only_dedicated=%s ignore=%s",
        policy.taint_key,
        policy.node_label_key,
        policy.namespace_override_annotation,
        policy.namespace_only_dedicated_annotation,
        policy.pod_only_dedicated_annotation,
        dict(policy.ignore_labels),
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        raise


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


async def _mutate(request: Request) -> JSONResponse:
    content_type = (request.headers.get("content-type") or "").split(";")[0].strip().lower()
    if content_type != "application/json":
        logger.info("contentType=%s, expect application/json", content_type or "<none>")
        raise HTTPException(status_code=415, detail="Content-Type must be application/json")

    body = await request.body()
    state = request.app.state
    # Namespace lookups block on the API server; keep them off the event loop.
    review = await run_in_threadpool(handle_review, body, lookup=state.namespaces, policy=state.policy)
    return JSONResponse(status_code=200, content=review)


@app.post("/")
async def mutate_root(request: Request) -> JSONResponse:
    return await _mutate(request)


@app.post("/mutate")
async def mutate(request: Request) -> JSONResponse:
    return await _mutate(request)


def run(server: ServerConfig, policy: Optional[PolicyConfig] = None) -> None:
    import uvicorn

    log_level = (server.log_level or os.getenv("LOG_LEVEL", "info")).upper()
    level = getattr(logging, log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    # main.py may already have configured the root logger, which makes basicConfig a no-op.
    logging.getLogger().setLevel(level)
    logger.setLevel(level)

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    configure(app, policy=policy)

    ssl_kwargs: Dict[str, Any] = {}
    if server.tls_enabled:
        ssl_kwargs = {"ssl_certfile": server.tls_cert_file, "ssl_keyfile": server.tls_key_file}
    else:
        logger.warning("TLS certificate not configured; serving plain HTTP (the API server requires HTTPS)")

    logger.info(
        "Starting webhook server on %s:%d (log_level=%s, tls=%s)",
        server.host,
        server.port,
        log_level,
        server.tls_enabled,
    )
    uvicorn.run(app, host=server.host, port=server.port, log_level=uvicorn_log_level, **ssl_kwargs)
