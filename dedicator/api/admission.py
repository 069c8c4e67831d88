"""
AdmissionReview codec and adapter.

Unwraps an AdmissionReview (admission.k8s.io/v1 or v1beta1), runs Pod CREATE
requests through the patch engine, and wraps the result back into a response
review. Everything that is not a Pod CREATE in the core group is allowed
unmodified without consulting the engine.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dedicator.config import PolicyConfig
from dedicator.core.models import PatchOperation, PodSnapshot
from dedicator.core.patch import make_patch
from dedicator.providers.k8s_provider import NamespaceLookup

logger = logging.getLogger(__name__)

ADMISSION_API_VERSIONS = ("admission.k8s.io/v1", "admission.k8s.io/v1beta1")
DEFAULT_API_VERSION = "admission.k8s.io/v1"
PATCH_TYPE_JSON_PATCH = "JSONPatch"


class _CamelModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class GroupVersionResource(_CamelModel):
    group: str = ""
    version: str = ""
    resource: str = ""


POD_RESOURCE = GroupVersionResource(group="", version="v1", resource="pods")


class AdmissionRequest(_CamelModel):
    uid: str
    resource: GroupVersionResource = Field(default_factory=GroupVersionResource)
    sub_resource: Optional[str] = Field(default=None, alias="subResource")
    name: Optional[str] = None
    namespace: Optional[str] = None
    operation: Optional[str] = None
    object: Optional[Dict[str, Any]] = None


class AdmissionReview(_CamelModel):
    api_version: str = Field(default=DEFAULT_API_VERSION, alias="apiVersion")
    kind: Literal["AdmissionReview"] = "AdmissionReview"
    request: Optional[AdmissionRequest] = None


class ResponseStatus(_CamelModel):
    code: Optional[int] = None
    message: Optional[str] = None


class AdmissionResponse(_CamelModel):
    uid: str = ""
    allowed: bool = True
    patch_type: Optional[str] = Field(default=None, alias="patchType")
    patch: Optional[str] = None
    status: Optional[ResponseStatus] = None


class AdmissionError(Exception):
    """The review or its embedded object could not be decoded."""


def decode_review(body: bytes) -> AdmissionReview:
    try:
        raw = json.loads(body)
    except (TypeError, ValueError) as e:
        raise AdmissionError(f"invalid JSON: {e}")
    if not isinstance(raw, dict):
        raise AdmissionError("AdmissionReview must be a JSON object")
    try:
        review = AdmissionReview.model_validate(raw)
    except ValidationError as e:
        raise AdmissionError(f"invalid AdmissionReview: {e.errors()[0].get('msg', str(e))}")
    if review.api_version not in ADMISSION_API_VERSIONS:
        raise AdmissionError(f"unsupported AdmissionReview apiVersion {review.api_version!r}")
    if review.request is None:
        raise AdmissionError("AdmissionReview has no request")
    return review


def encode_patch(operations: List[PatchOperation]) -> str:
    """Serialize operations as a base64 RFC 6902 document (the form AdmissionResponse.patch expects)."""
    doc = [op.model_dump(mode="json") for op in operations]
    return base64.b64encode(json.dumps(doc, separators=(",", ":")).encode("utf-8")).decode("ascii")


def error_response(uid: str, message: str) -> AdmissionResponse:
    return AdmissionResponse(uid=uid, allowed=False, status=ResponseStatus(code=400, message=message))


def review_response(api_version: str, response: AdmissionResponse) -> Dict[str, Any]:
    """Build the response review dict. Unset fields are omitted; an unmodified Pod carries no patch."""
    return {
        "apiVersion": api_version if api_version in ADMISSION_API_VERSIONS else DEFAULT_API_VERSION,
        "kind": "AdmissionReview",
        "response": response.model_dump(by_alias=True, exclude_none=True),
    }


def admit(request: AdmissionRequest, *, lookup: NamespaceLookup, policy: PolicyConfig) -> AdmissionResponse:
    """Decide the AdmissionResponse for one request."""
    if request.resource != POD_RESOURCE:
        logger.info("Skipping %s: expected resource to be pods", request.resource.resource or "unknown resource")
        return AdmissionResponse(uid=request.uid)

    # pods/binding, pods/eviction etc. are CREATEs too, but not of a new Pod.
    if request.sub_resource:
        logger.info("Skipping pods/%s: subresources are never patched", request.sub_resource)
        return AdmissionResponse(uid=request.uid)

    if request.operation != "CREATE":
        logger.info("Skipping %s on pods: expected operation to be CREATE", request.operation)
        return AdmissionResponse(uid=request.uid)

    if not isinstance(request.object, dict):
        return error_response(request.uid, "request has no Pod object")
    try:
        pod = PodSnapshot.from_object(request.object)
    except ValidationError as e:
        logger.warning("Could not decode Pod in request %s: %s", request.uid, str(e))
        return error_response(request.uid, f"invalid Pod object: {e.errors()[0].get('msg', str(e))}")
    except ValueError as e:
        logger.warning("Could not decode Pod in request %s: %s", request.uid, str(e))
        return error_response(request.uid, f"invalid Pod object: {e}")

    namespace = request.namespace or pod.namespace
    operations = make_patch(pod, namespace, lookup, policy)

    response = AdmissionResponse(uid=request.uid)
    if operations:
        logger.info(
            "Patching pod %s/%s with %d operation(s)", namespace, pod.name or request.name, len(operations)
        )
        response.patch_type = PATCH_TYPE_JSON_PATCH
        response.patch = encode_patch(operations)
    return response


def handle_review(body: bytes, *, lookup: NamespaceLookup, policy: PolicyConfig) -> Dict[str, Any]:
    """
    Full round trip: raw request body in, response review dict out.

    Decode failures become a denied response with a message rather than an exception,
    so the API server surfaces the reason.
    """
    try:
        review = decode_review(body)
    except AdmissionError as e:
        logger.warning("Rejecting undecodable AdmissionReview: %s", str(e))
        uid = _best_effort_uid(body)
        return review_response(DEFAULT_API_VERSION, error_response(uid, str(e)))

    assert review.request is not None
    response = admit(review.request, lookup=lookup, policy=policy)
    return review_response(review.api_version, response)


def _best_effort_uid(body: bytes) -> str:
    try:
        raw = json.loads(body)
        uid = ((raw or {}).get("request") or {}).get("uid")
        return str(uid) if uid else ""
    except (ValueError, AttributeError, TypeError):
        return ""
