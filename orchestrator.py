"""Orchestrator: list nodes -> filter -> utilization -> tracker -> cordon, forever.
One cycle at a time; the next cycle starts only after the previous cycle and its backoff finish.
"""
import argparse
import logging
import signal
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from config import (
    setup_logging, build_settings, validate_settings,
    ConfigValidationError, QuarantineError, Settings
)
from cluster.kube_client import KubeClient, KubeError, load_kube_config
from analysis.node_filter import filter_nodes
from analysis.evaluator import UnderutilizationTracker
from normalize.utilization import compute_utilizations
import status_server

logger = logging.getLogger(__name__)

OUTCOME_SKIPPED = 'skipped'
OUTCOME_IDLE = 'idle'
OUTCOME_CORDONED = 'cordoned'
OUTCOME_ERROR = 'error'


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EvaluationResult:
    outcome: str
    node_count: int = 0
    candidate: Optional[str] = None

    @property
    def did_cordon(self) -> bool:
        return self.outcome == OUTCOME_CORDONED


def build_tracker(settings: Settings) -> UnderutilizationTracker:
    return UnderutilizationTracker(
        threshold=settings.utilization_threshold,
        unused_age=timedelta(seconds=settings.unused_age_seconds),
    )


def run_single_evaluation(kube: KubeClient,
                          tracker: UnderutilizationTracker,
                          settings: Settings,
                          now: Optional[datetime] = None) -> EvaluationResult:
    """Run one evaluation cycle

    Raises:
        KubeError: If listing nodes/pods or cordoning fails. The tracker is
            left as it was before the failing call.
    """
    now = now or _now()
    nodes = filter_nodes(kube.list_nodes(), now)

    if len(nodes) <= settings.min_nodes:
        logger.info(f"{len(nodes)} eligible node(s), at or below minimum of {settings.min_nodes}; skipping evaluation")
        return EvaluationResult(OUTCOME_SKIPPED, node_count=len(nodes))

    pods_by_node: Dict[str, List[Dict[str, Any]]] = {}
    for node in nodes:
        pods_by_node[node['name']] = kube.list_pods_on_node(node['name'])

    utilizations = compute_utilizations(nodes, pods_by_node)
    logger.info(f"Acquired utilization for {len(utilizations)} node(s)")
    for util in utilizations:
        logger.info(f"Utilization for {util.name} - {100 * util.max_utilization:.0f}%")

    tracker.update(utilizations, now)
    candidate = tracker.select_candidate(now)
    if candidate is None:
        return EvaluationResult(OUTCOME_IDLE, node_count=len(nodes))

    kube.cordon_node(candidate)
    tracker.acknowledge(candidate)
    return EvaluationResult(OUTCOME_CORDONED, node_count=len(nodes), candidate=candidate)


def next_delay(result: Optional[EvaluationResult], settings: Settings) -> int:
    """Seconds to wait after a cycle; result is None when the cycle failed"""
    if result is None:
        return settings.error_backoff_seconds
    if result.did_cordon:
        return settings.cordon_backoff_seconds
    return settings.evaluation_period_seconds


def run_forever(kube: KubeClient,
                tracker: UnderutilizationTracker,
                settings: Settings,
                stop_event: threading.Event,
                status: Optional[status_server.ControllerStatus] = None) -> None:
    """Evaluate until stop_event is set. Cycle errors are logged and backed off, never fatal."""
    while not stop_event.is_set():
        logger.debug("Begin evaluation cycle")
        result: Optional[EvaluationResult] = None
        try:
            result = run_single_evaluation(kube, tracker, settings)
        except QuarantineError as e:
            logger.error(f"Evaluation failed: {e}")
            if status is not None:
                status.record_cycle(OUTCOME_ERROR, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error during evaluation: {e}")
            if status is not None:
                status.record_cycle(OUTCOME_ERROR, error=str(e))
        else:
            if result.did_cordon:
                logger.info(f"Cordoned node {result.candidate}")
            else:
                logger.info("Did not cordon any node")
            if status is not None:
                status.record_cycle(result.outcome, candidate=result.candidate)

        delay = next_delay(result, settings)
        logger.debug(f"Sleeping {delay}s before next cycle")
        stop_event.wait(delay)

    logger.info("Evaluation loop stopped")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="node-quarantine",
        description="Cordon the most underutilized long-standing node so it can be scaled down"
    )
    p.add_argument("--config", help="YAML settings file (also QUARANTINE_CONFIG)")
    p.add_argument("--node-labels", dest="label_selector",
                   help="node label selector, e.g. group=quarantine")
    p.add_argument("--threshold", dest="utilization_threshold", type=float,
                   help="utilization fraction below which a node is underutilized (default 0.5)")
    p.add_argument("--unneeded-time", dest="unused_age_seconds", type=int,
                   help="seconds a node must stay underutilized before it may be cordoned (default 600)")
    p.add_argument("--evaluation-period", dest="evaluation_period_seconds", type=int,
                   help="seconds between evaluations (default 30)")
    p.add_argument("--error-backoff", dest="error_backoff_seconds", type=int,
                   help="seconds to wait after a failed evaluation (default 300)")
    p.add_argument("--cordon-backoff", dest="cordon_backoff_seconds", type=int,
                   help="seconds to wait after cordoning a node (default 120)")
    p.add_argument("--min-nodes", dest="min_nodes", type=int,
                   help="skip evaluation at or below this many eligible nodes (default 5)")
    p.add_argument("--dry-run", dest="dry_run", action="store_true", default=None,
                   help="log the cordon instead of patching the node")
    p.add_argument("--kubeconfig", help="kubeconfig path (default: in-cluster, then ~/.kube/config)")
    p.add_argument("--status-port", dest="status_port", type=int,
                   help="port for /health, /ready, /api/status and /metrics; 0 disables (default 8080)")
    p.add_argument("--request-timeout", dest="request_timeout_seconds", type=int,
                   help="timeout in seconds for each Kubernetes API call (default 30)")
    p.add_argument("--debug", action="store_true", help="use debug logs")
    return p.parse_args(argv)


_OVERRIDE_KEYS = (
    "label_selector", "utilization_threshold", "unused_age_seconds",
    "evaluation_period_seconds", "error_backoff_seconds", "cordon_backoff_seconds",
    "min_nodes", "dry_run", "kubeconfig", "status_port", "request_timeout_seconds",
)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(debug=args.debug)

    try:
        settings = build_settings(
            config_path=args.config,
            overrides={k: getattr(args, k) for k in _OVERRIDE_KEYS},
        )
        validate_settings(settings)
        logger.info("Configuration validated successfully")
    except ConfigValidationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except OSError as e:
        logger.error(f"Could not read configuration: {e}")
        return 1

    logger.info(
        f"Starting node-quarantine (labels='{settings.label_selector}', "
        f"threshold={settings.utilization_threshold}, dry_run={settings.dry_run})"
    )

    try:
        load_kube_config(settings.kubeconfig)
    except KubeError as e:
        logger.error(f"Cluster configuration error: {e}")
        return 1

    kube = KubeClient(
        label_selector=settings.label_selector,
        dry_run=settings.dry_run,
        timeout=settings.request_timeout_seconds,
    )
    tracker = build_tracker(settings)
    status = status_server.ControllerStatus()

    if settings.status_port:
        status_server.bind(status, tracker, settings)
        status_server.serve_in_background(settings.status_port)

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    run_forever(kube, tracker, settings, stop_event, status)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
