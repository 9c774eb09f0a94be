"""Request utilization per node: the higher of the CPU and memory request ratios."""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

# Reported when no dimension can be measured, so the node is never picked
UNMEASURABLE_UTILIZATION = 1.0


@dataclass(frozen=True)
class NodeUtilization:
    name: str
    max_utilization: float


def _ratio(requested: float, allocatable: Optional[float]) -> Optional[float]:
    if allocatable is None or allocatable <= 0:
        return None
    return requested / allocatable


def sum_requests(pods: List[Dict[str, Any]]) -> Dict[str, float]:
    """Total CPU (cores) and memory (bytes) requested by all containers of all pods"""
    cpu = 0.0
    memory = 0.0
    for pod in pods:
        for c in pod.get('containers', []):
            cpu += c.get('cpu_request') or 0.0
            memory += c.get('memory_request') or 0.0
    return {'cpu': cpu, 'memory': memory}


def compute_utilization(node: Dict[str, Any], pods: List[Dict[str, Any]]) -> NodeUtilization:
    """Request-based utilization of a node: the larger of CPU and memory
    requests over allocatable.

    A dimension with missing or non-positive allocatable is skipped. If no
    dimension is measurable the node is reported fully utilized.
    """
    totals = sum_requests(pods)
    ratios = [
        r for r in (
            _ratio(totals['cpu'], node.get('cpu_allocatable')),
            _ratio(totals['memory'], node.get('memory_allocatable')),
        )
        if r is not None
    ]
    if not ratios:
        return NodeUtilization(node['name'], UNMEASURABLE_UTILIZATION)
    return NodeUtilization(node['name'], max(ratios))


def compute_utilizations(nodes: List[Dict[str, Any]],
                         pods_by_node: Dict[str, List[Dict[str, Any]]]) -> List[NodeUtilization]:
    return [compute_utilization(n, pods_by_node.get(n['name'], [])) for n in nodes]
