"""
Node and pod discovery - converts Kubernetes API objects into plain records.

Node record keys:
  - name, labels
  - created_at: aware UTC datetime (None if the API did not report one)
  - ready: True only when the node's Ready condition is "True"
  - unschedulable: spec.unschedulable
  - cpu_allocatable / memory_allocatable, cpu_capacity / memory_capacity:
    cores and bytes as floats, None when not reported

Pod record keys:
  - name, namespace, phase
  - containers: list of {cpu_request, memory_request} (cores / bytes, 0.0 when unset)
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from kubernetes.utils import parse_quantity

logger = logging.getLogger(__name__)

# Pods in these phases no longer hold their requests on the node
TERMINAL_POD_PHASES = ("Succeeded", "Failed")


def _quantity(resources: Optional[Dict[str, Any]], key: str) -> Optional[float]:
    if not resources:
        return None
    raw = resources.get(key)
    if raw is None:
        return None
    try:
        return float(parse_quantity(raw))
    except ValueError as e:
        logger.warning(f"Unparseable {key} quantity '{raw}': {e}")
        return None


def _as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _is_ready(node) -> bool:
    status = node.status
    if status is None:
        return False
    for condition in status.conditions or []:
        if condition.type == "Ready":
            return condition.status == "True"
    return False


def node_record(node) -> Dict[str, Any]:
    """Build a node record from a V1Node"""
    metadata = node.metadata
    spec = node.spec
    status = node.status
    allocatable = status.allocatable if status else None
    capacity = status.capacity if status else None
    return {
        'name': metadata.name,
        'labels': dict(metadata.labels or {}),
        'created_at': _as_utc(metadata.creation_timestamp),
        'ready': _is_ready(node),
        'unschedulable': bool(spec.unschedulable) if spec else False,
        'cpu_allocatable': _quantity(allocatable, 'cpu'),
        'memory_allocatable': _quantity(allocatable, 'memory'),
        'cpu_capacity': _quantity(capacity, 'cpu'),
        'memory_capacity': _quantity(capacity, 'memory'),
    }


def pod_record(pod) -> Dict[str, Any]:
    """Build a pod record from a V1Pod, keeping only container requests"""
    containers = []
    for c in (pod.spec.containers if pod.spec else None) or []:
        requests_ = c.resources.requests if c.resources else None
        containers.append({
            'cpu_request': _quantity(requests_, 'cpu') or 0.0,
            'memory_request': _quantity(requests_, 'memory') or 0.0,
        })
    return {
        'name': pod.metadata.name,
        'namespace': pod.metadata.namespace,
        'phase': pod.status.phase if pod.status else None,
        'containers': containers,
    }


def node_records(nodes) -> List[Dict[str, Any]]:
    return [node_record(n) for n in nodes]


def active_pod_records(pods) -> List[Dict[str, Any]]:
    """Pod records for pods still holding resources on their node"""
    records = []
    for pod in pods:
        record = pod_record(pod)
        if record['phase'] in TERMINAL_POD_PHASES:
            continue
        records.append(record)
    return records
