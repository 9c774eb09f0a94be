"""
Underutilization tracking and cordon candidate selection.

The tracker is the controller's only long-lived state: a map of node name to
the most recent utilization reading and the time the node's current
underutilized streak began. It lives in memory only, so a restart begins
every streak again.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from normalize.utilization import NodeUtilization

logger = logging.getLogger(__name__)


@dataclass
class TrackedNode:
    name: str
    utilization: float
    since: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            'name': self.name,
            'utilization': self.utilization,
            'since': self.since.isoformat(),
        }


class UnderutilizationTracker:
    """Tracks continuously underutilized nodes and picks the one to cordon

    Args:
        threshold: utilization fraction below which a node is underutilized
        unused_age: how long a node must stay underutilized before it can be
            returned by select_candidate

    All public methods take an internal lock, so the status server can read
    the tracker while the evaluation loop updates it.
    """

    def __init__(self, threshold: float, unused_age: timedelta):
        self.threshold = threshold
        self.unused_age = unused_age
        self._nodes: Dict[str, TrackedNode] = {}
        self._lock = threading.Lock()

    def update(self, snapshot: Iterable[NodeUtilization], now: datetime) -> None:
        """Fold one cycle's utilization snapshot into the tracked set"""
        seen = set()
        with self._lock:
            for util in snapshot:
                seen.add(util.name)
                if util.max_utilization >= self.threshold:
                    if self._nodes.pop(util.name, None) is not None:
                        logger.info(
                            f"Node {util.name} recovered ({util.max_utilization:.2f} >= "
                            f"{self.threshold:.2f}), no longer tracked"
                        )
                    continue

                tracked = self._nodes.get(util.name)
                if tracked is None:
                    self._nodes[util.name] = TrackedNode(util.name, util.max_utilization, now)
                    logger.info(f"Node {util.name} underutilized ({util.max_utilization:.2f}), tracking")
                else:
                    # keep the streak start, refresh the reading
                    tracked.utilization = util.max_utilization

            for name in [n for n in self._nodes if n not in seen]:
                del self._nodes[name]
                logger.info(f"Node {name} missing from snapshot, no longer tracked")

    def select_candidate(self, now: datetime) -> Optional[str]:
        """Name of the emptiest node underutilized for at least unused_age, if any"""
        cutoff = now - self.unused_age
        with self._lock:
            eligible = [t for t in self._nodes.values() if t.since <= cutoff]
        if not eligible:
            return None
        best = min(eligible, key=lambda t: (t.utilization, t.name))
        logger.info(
            f"Cordon candidate {best.name} at {best.utilization:.2f}, "
            f"underutilized since {best.since.isoformat()} ({len(eligible)} eligible)"
        )
        return best.name

    def acknowledge(self, name: str) -> None:
        """Stop tracking a node that has been cordoned. Unknown names are ignored."""
        with self._lock:
            self._nodes.pop(name, None)

    def reset(self) -> None:
        with self._lock:
            self._nodes.clear()

    def tracked(self) -> Dict[str, TrackedNode]:
        """Copy of the tracked set"""
        with self._lock:
            return {
                name: TrackedNode(t.name, t.utilization, t.since)
                for name, t in self._nodes.items()
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._nodes
