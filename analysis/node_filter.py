"""
Node filtering - drops nodes that must never be considered for cordoning.
Applied fresh every cycle; nothing is remembered between cycles.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from config import NEW_NODE_GRACE_SECONDS

logger = logging.getLogger(__name__)

NEW_NODE_GRACE_PERIOD = timedelta(seconds=NEW_NODE_GRACE_SECONDS)


def exclusion_reason(node: Dict[str, Any], now: datetime) -> Optional[str]:
    """Why a node is excluded this cycle, or None if it is eligible"""
    if not node.get('ready'):
        return "not ready"
    if node.get('unschedulable'):
        return "unschedulable"
    created_at = node.get('created_at')
    if created_at is None:
        return "creation timestamp unknown"
    if created_at > now - NEW_NODE_GRACE_PERIOD:
        return f"created less than {NEW_NODE_GRACE_SECONDS // 60}m ago"
    return None


def filter_nodes(nodes: List[Dict[str, Any]], now: datetime) -> List[Dict[str, Any]]:
    """Order-preserving subset of nodes that are ready, schedulable and not new"""
    kept = []
    for node in nodes:
        reason = exclusion_reason(node, now)
        if reason:
            logger.info(f"Node {node.get('name')} excluded: {reason}")
            continue
        kept.append(node)
    return kept
