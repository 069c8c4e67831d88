"""
Patch-decision engine.

Given a Pod, its Namespace and the dedication policy, compute the minimal list
of JSON-Patch `add` operations that pin the Pod to the namespace's dedicated
node pool:

- one toleration per taint effect (NoExecute, then NoSchedule) for the policy
  taint key, unless the Pod already tolerates it;
- a nodeSelector entry for the policy label key, when the Namespace asks for
  it (always, or per-pod via annotation) and the Pod does not set one.

Everything here is pure except `make_patch`, which performs the Namespace lookup
through an injected provider. Nothing in this module raises for a well-typed
input; a failed lookup means "leave the Pod alone".
"""

from __future__ import annotations

import logging
from typing import List, Mapping, Optional

from dedicator.config import PolicyConfig
from dedicator.core.models import (
    TAINT_EFFECT_NO_EXECUTE,
    TAINT_EFFECT_NO_SCHEDULE,
    NamespaceSnapshot,
    PatchOperation,
    PodSnapshot,
)
from dedicator.core.pointer import join_pointer
from dedicator.providers.k8s_provider import NamespaceLookup, NamespaceLookupError

logger = logging.getLogger(__name__)

# Order matters: toleration indices are assigned in this order.
TAINT_EFFECTS = (TAINT_EFFECT_NO_EXECUTE, TAINT_EFFECT_NO_SCHEDULE)

ONLY_DEDICATED_ALWAYS = "true"
ONLY_DEDICATED_BY_POD_ANNOTATION = "annotation"


def matches_ignore_rule(labels: Mapping[str, str], ignore_labels: Mapping[str, str]) -> bool:
    """True when the pod carries any one of the ignored label=value pairs."""
    for label, value in ignore_labels.items():
        if label in labels and labels[label] == value:
            return True
    return False


def resolve_dedication_value(namespace: NamespaceSnapshot, policy: PolicyConfig) -> str:
    override = namespace.annotations.get(policy.namespace_override_annotation)
    if override:
        return override
    return namespace.name


def toleration_operations(pod: PodSnapshot, dedication: str, policy: PolicyConfig) -> List[PatchOperation]:
    ops: List[PatchOperation] = []
    position = len(pod.tolerations)
    for effect in TAINT_EFFECTS:
        if pod.has_toleration(policy.taint_key, effect):
            continue
        ops.append(
            PatchOperation(
                path=join_pointer("spec", "tolerations", position),
                value={
                    "key": policy.taint_key,
                    "operator": "Equal",
                    "value": dedication,
                    "effect": effect,
                },
            )
        )
        position += 1
    return ops


def wants_node_selector(pod: PodSnapshot, namespace: NamespaceSnapshot, policy: PolicyConfig) -> bool:
    mode = namespace.annotations.get(policy.namespace_only_dedicated_annotation)
    if mode is None:
        return False
    if mode == ONLY_DEDICATED_ALWAYS:
        return True
    if mode == ONLY_DEDICATED_BY_POD_ANNOTATION:
        return pod.annotations.get(policy.pod_only_dedicated_annotation) == "true"
    return False


def node_selector_operations(
    pod: PodSnapshot, namespace: NamespaceSnapshot, dedication: str, policy: PolicyConfig
) -> List[PatchOperation]:
    # Never overwrite a selector the pod author chose.
    if policy.node_label_key in pod.node_selector:
        return []
    if not wants_node_selector(pod, namespace, policy):
        return []

    if not pod.node_selector:
        return [PatchOperation(path=join_pointer("spec", "nodeSelector"), value={policy.node_label_key: dedication})]
    return [PatchOperation(path=join_pointer("spec", "nodeSelector", policy.node_label_key), value=dedication)]


def compute_patch(pod: PodSnapshot, namespace: NamespaceSnapshot, policy: PolicyConfig) -> List[PatchOperation]:
    """
    Pure decision: operations needed to bring `pod` in line with `namespace`'s dedication.

    Returns tolerations first, then the node selector. Empty means "admit unmodified".
    """
    if matches_ignore_rule(pod.labels, policy.ignore_labels):
        return []
    dedication = resolve_dedication_value(namespace, policy)
    ops = toleration_operations(pod, dedication, policy)
    ops.extend(node_selector_operations(pod, namespace, dedication, policy))
    return ops


def make_patch(
    pod: PodSnapshot,
    namespace_name: Optional[str],
    lookup: NamespaceLookup,
    policy: PolicyConfig,
) -> List[PatchOperation]:
    """
    Look up the pod's Namespace and compute the patch.

    The ignore rules are checked before the lookup so ignored pods cost no API call.
    Lookup failures are logged and produce an empty patch; admission must not fail
    because the Namespace could not be read.
    """
    if matches_ignore_rule(pod.labels, policy.ignore_labels):
        logger.debug("Pod %s/%s matches an ignore rule; leaving it unmodified", namespace_name, pod.name)
        return []

    if not namespace_name:
        logger.warning("Pod %s has no namespace; leaving it unmodified", pod.name)
        return []

    try:
        namespace = lookup.get_namespace(namespace_name)
    except NamespaceLookupError as e:
        logger.warning("Namespace lookup failed for %s: %s", namespace_name, str(e))
        return []

    return compute_patch(pod, namespace, policy)
