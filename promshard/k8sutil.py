"""Helpers for Kubernetes objects in their JSON form."""

from typing import Any, Mapping


def is_pod_ready(pod: Mapping[str, Any]) -> bool:
    """Return True if the pod has a ``Ready`` condition with status ``True``."""
    status = pod.get("status") or {}
    conditions = status.get("conditions") or []
    return any(
        condition.get("type") == "Ready" and condition.get("status") == "True"
        for condition in conditions
    )