"""Canonical domain models for admission decisions.

Snapshots are decoded from raw Kubernetes objects (camelCase JSON). They are
permissive about unknown fields because the API server sends the full object
and we only read the scheduling-related parts.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

TAINT_EFFECT_NO_EXECUTE = "NoExecute"
TAINT_EFFECT_NO_SCHEDULE = "NoSchedule"


class BaseModelIgnoreExtra(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class BaseModelStrict(BaseModel):
    model_config = ConfigDict(extra="forbid")


def _none_to_empty_dict(v: Any) -> Any:
    # Kubernetes serializes empty maps as null or omits them entirely.
    return {} if v is None else v


class Toleration(BaseModelIgnoreExtra):
    key: Optional[str] = None
    operator: Optional[str] = None
    value: Optional[str] = None
    effect: Optional[str] = None
    toleration_seconds: Optional[int] = Field(default=None, alias="tolerationSeconds")


class PodSnapshot(BaseModelIgnoreExtra):
    name: Optional[str] = None
    namespace: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    tolerations: List[Toleration] = Field(default_factory=list)
    node_selector: Dict[str, str] = Field(default_factory=dict, alias="nodeSelector")

    @field_validator("labels", "annotations", "node_selector", mode="before")
    @classmethod
    def _maps_default_empty(cls, v: Any) -> Any:
        return _none_to_empty_dict(v)

    @field_validator("tolerations", mode="before")
    @classmethod
    def _tolerations_default_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "PodSnapshot":
        """
        Build a snapshot from a raw Pod object (as found in AdmissionReview.request.object).

        Raises ValueError (pydantic's ValidationError included) when the object is not Pod-shaped.
        """
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be an object")
        if not isinstance(spec, dict):
            raise ValueError("spec must be an object")
        # generateName-only pods have no name yet at admission time.
        name = metadata.get("name") or metadata.get("generateName")
        return cls.model_validate(
            {
                "name": name,
                "namespace": metadata.get("namespace"),
                "labels": metadata.get("labels"),
                "annotations": metadata.get("annotations"),
                "tolerations": spec.get("tolerations"),
                "nodeSelector": spec.get("nodeSelector"),
            }
        )

    def has_toleration(self, key: str, effect: str) -> bool:
        return any(t.key == key and t.effect == effect for t in self.tolerations)


class NamespaceSnapshot(BaseModelIgnoreExtra):
    name: str
    annotations: Dict[str, str] = Field(default_factory=dict)

    @field_validator("annotations", mode="before")
    @classmethod
    def _annotations_default_empty(cls, v: Any) -> Any:
        return _none_to_empty_dict(v)


class PatchOperation(BaseModelStrict):
    """A single RFC 6902 operation. Only `add` is ever produced."""

    op: Literal["add"] = "add"
    path: str
    value: Any
