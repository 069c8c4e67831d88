"""Kubernetes API client for the read-only Namespace lookups the webhook needs."""

from __future__ import annotations

import threading
from typing import Optional, Protocol, runtime_checkable

from dedicator.core.models import NamespaceSnapshot

_core_v1_api = None
_config_loaded = False
_init_lock = threading.Lock()


class NamespaceLookupError(Exception):
    """The Namespace could not be read (API error, missing client, bad config)."""


class NamespaceNotFound(NamespaceLookupError):
    pass


@runtime_checkable
class NamespaceLookup(Protocol):
    def get_namespace(self, name: str) -> NamespaceSnapshot: ...


class DefaultK8sProvider:
    def get_namespace(self, name: str) -> NamespaceSnapshot:
        return get_namespace(name)


def get_k8s_provider() -> NamespaceLookup:
    """Seam for swapping provider implementations (tests inject an in-memory lookup)."""
    return DefaultK8sProvider()


def _get_core_v1():
    """
    Return a cached CoreV1Api client.

    Config loading (in-cluster, falling back to kubeconfig) and the client object are
    both created once; admission requests must not pay for them.
    """
    global _core_v1_api, _config_loaded

    if _core_v1_api is not None:
        return _core_v1_api

    with _init_lock:
        if _core_v1_api is not None:
            return _core_v1_api

        from kubernetes import client, config

        if not _config_loaded:
            try:
                config.load_incluster_config()
            except config.ConfigException:
                config.load_kube_config()
            _config_loaded = True

        _core_v1_api = client.CoreV1Api()
        return _core_v1_api


def reset_client_cache() -> None:
    """Drop the cached client (used by tests and after kubeconfig changes)."""
    global _core_v1_api, _config_loaded
    with _init_lock:
        _core_v1_api = None
        _config_loaded = False


def get_namespace(name: str) -> NamespaceSnapshot:
    """
    Read a Namespace and return its name and annotations.

    Raises:
        NamespaceNotFound: the API server answered 404.
        NamespaceLookupError: any other failure (client init, API error, timeout).
    """
    if not name:
        raise NamespaceLookupError("Namespace name required")

    from kubernetes.client.rest import ApiException

    try:
        v1 = _get_core_v1()
        ns = v1.read_namespace(name=name)
    except ApiException as e:
        if e.status == 404:
            raise NamespaceNotFound(f"Namespace {name} not found")
        raise NamespaceLookupError(f"Kubernetes API error: {e.reason} - {e.body}")
    except Exception as e:
        raise NamespaceLookupError(f"Failed to fetch Namespace {name}: {str(e)}")

    metadata = getattr(ns, "metadata", None)
    annotations: Optional[dict] = getattr(metadata, "annotations", None) if metadata else None
    return NamespaceSnapshot(
        name=(getattr(metadata, "name", None) if metadata else None) or name,
        annotations=dict(annotations) if isinstance(annotations, dict) else {},
    )
