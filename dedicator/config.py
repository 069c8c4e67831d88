from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping, Optional

DEFAULT_TAINT_KEY = "k8s.smp.io/dedicated"
DEFAULT_NODE_LABEL_KEY = "k8s.smp.io/dedicated"
DEFAULT_NAMESPACE_OVERRIDE_ANNOTATION = "k8s.smp.io/dedicated"
DEFAULT_NAMESPACE_ONLY_DEDICATED_ANNOTATION = "k8s.smp.io/only-dedicated-nodes"
DEFAULT_POD_ONLY_DEDICATED_ANNOTATION = "k8s.smp.io/only-dedicated-nodes"


class ConfigError(ValueError):
    """Startup-time misconfiguration. The process should not start serving."""


def parse_ignore_pods(raw: str) -> Mapping[str, str]:
    """
    Parse a comma-separated `label=value` list into an ignore map.

    Blank items are skipped so that an unset flag means "ignore nothing".
    Only the first `=` separates label from value.
    """
    out = {}
    for item in (raw or "").split(","):
        item = item.strip()
        if not item:
            continue
        label, sep, value = item.partition("=")
        label = label.strip()
        if not sep or not label:
            raise ConfigError(f"invalid ignore-pods entry {item!r}: expected label=value")
        out[label] = value.strip()
    return MappingProxyType(out)


@dataclass(frozen=True)
class PolicyConfig:
    taint_key: str = DEFAULT_TAINT_KEY
    node_label_key: str = DEFAULT_NODE_LABEL_KEY
    namespace_override_annotation: str = DEFAULT_NAMESPACE_OVERRIDE_ANNOTATION
    namespace_only_dedicated_annotation: str = DEFAULT_NAMESPACE_ONLY_DEDICATED_ANNOTATION
    pod_only_dedicated_annotation: str = DEFAULT_POD_ONLY_DEDICATED_ANNOTATION
    # A pod matching any one entry (label == value) is left alone.
    ignore_labels: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if not isinstance(self.ignore_labels, MappingProxyType):
            object.__setattr__(self, "ignore_labels", MappingProxyType(dict(self.ignore_labels)))
        self.validate()

    def validate(self) -> None:
        for name in (
            "taint_key",
            "node_label_key",
            "namespace_override_annotation",
            "namespace_only_dedicated_annotation",
            "pod_only_dedicated_annotation",
        ):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"{name} must be a non-empty string")
        for label in self.ignore_labels:
            if not label:
                raise ConfigError("ignore_labels must not contain an empty label key")

    def with_overrides(self, **overrides: Any) -> "PolicyConfig":
        """Return a copy with the non-None overrides applied (CLI flags on top of env)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "ignore_labels" in changes and isinstance(changes["ignore_labels"], str):
            changes["ignore_labels"] = parse_ignore_pods(changes["ignore_labels"])
        return replace(self, **changes) if changes else self


def _env_str(name: str, default: str) -> str:
    return (os.getenv(name) or "").strip() or default


def load_policy_config() -> PolicyConfig:
    """
    Load the dedication policy from environment variables.

    Raises ConfigError when a value is unusable; callers treat that as fatal.
    """
    return PolicyConfig(
        taint_key=_env_str("NODE_TAINT_KEY", DEFAULT_TAINT_KEY),
        node_label_key=_env_str("NODE_LABEL_NAME", DEFAULT_NODE_LABEL_KEY),
        namespace_override_annotation=_env_str("NAMESPACE_ANNOTATION_OVERWRITE", DEFAULT_NAMESPACE_OVERRIDE_ANNOTATION),
        namespace_only_dedicated_annotation=_env_str(
            "NAMESPACE_ANNOTATION_ONLY_DEDICATED", DEFAULT_NAMESPACE_ONLY_DEDICATED_ANNOTATION
        ),
        pod_only_dedicated_annotation=_env_str("POD_ANNOTATION_ONLY_DEDICATED", DEFAULT_POD_ONLY_DEDICATED_ANNOTATION),
        ignore_labels=parse_ignore_pods(os.getenv("IGNORE_PODS", "")),
    )


@dataclass(frozen=True)
class ServerConfig:
    host: str
    port: int
    tls_cert_file: Optional[str]
    tls_key_file: Optional[str]
    log_level: str

    def __post_init__(self) -> None:
        if bool(self.tls_cert_file) != bool(self.tls_key_file):
            raise ConfigError("TLS certificate and key files must be set together")
        if not 0 < self.port < 65536:
            raise ConfigError(f"port out of range: {self.port}")

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_cert_file and self.tls_key_file)

    def with_overrides(self, **overrides: Any) -> "ServerConfig":
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


def load_server_config() -> ServerConfig:
    port_raw = (os.getenv("PORT") or "").strip() or "443"
    try:
        port = int(port_raw)
    except ValueError:
        raise ConfigError(f"PORT must be an integer, got {port_raw!r}")
    return ServerConfig(
        host=(os.getenv("HOST") or "").strip() or "0.0.0.0",
        port=port,
        tls_cert_file=(os.getenv("TLS_CERT_FILE") or "").strip() or None,
        tls_key_file=(os.getenv("TLS_KEY_FILE") or "").strip() or None,
        log_level=(os.getenv("LOG_LEVEL") or "info").strip().lower() or "info",
    )
