"""
Status endpoints for the quarantine controller

- /health: liveness, always 200
- /ready: 200 once at least one evaluation cycle has finished
- /api/status: settings, last cycle outcome and the tracked nodes
- /metrics: Prometheus text format counters and gauges
"""
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Flask, jsonify, Response

logger = logging.getLogger(__name__)

app = Flask(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


class ControllerStatus:
    """Counters and last-cycle facts shared between the loop and the HTTP thread"""

    def __init__(self):
        self._lock = threading.Lock()
        self.start_time = time.time()
        self.cycles_total = 0
        self.errors_total = 0
        self.cordons_total = 0
        self.skipped_total = 0
        self.last_cycle_at: Optional[datetime] = None
        self.last_outcome: Optional[str] = None
        self.last_candidate: Optional[str] = None
        self.last_error: Optional[str] = None

    def record_cycle(self, outcome: str, candidate: Optional[str] = None,
                     error: Optional[str] = None) -> None:
        with self._lock:
            self.cycles_total += 1
            self.last_cycle_at = datetime.now(timezone.utc)
            self.last_outcome = outcome
            self.last_error = error
            if candidate is not None:
                self.last_candidate = candidate
            if outcome == 'error':
                self.errors_total += 1
            elif outcome == 'cordoned':
                self.cordons_total += 1
            elif outcome == 'skipped':
                self.skipped_total += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'cycles_total': self.cycles_total,
                'errors_total': self.errors_total,
                'cordons_total': self.cordons_total,
                'skipped_total': self.skipped_total,
                'last_cycle_at': self.last_cycle_at.isoformat() if self.last_cycle_at else None,
                'last_outcome': self.last_outcome,
                'last_candidate': self.last_candidate,
                'last_error': self.last_error,
                'uptime_seconds': time.time() - self.start_time,
            }


# Bound by the controller before serving
_state: Dict[str, Any] = {
    'status': None,
    'tracker': None,
    'settings': None,
}


def bind(status: ControllerStatus, tracker, settings) -> None:
    _state['status'] = status
    _state['tracker'] = tracker
    _state['settings'] = settings


def _tracked_nodes():
    tracker = _state['tracker']
    if tracker is None:
        return []
    return [t.to_dict() for t in sorted(tracker.tracked().values(), key=lambda t: t.name)]


@app.route('/health')
def health():
    """Health check endpoint for liveness probes"""
    return jsonify({
        "status": "healthy",
        "timestamp": _now_iso()
    })


@app.route('/ready')
def ready():
    """Readiness check endpoint - at least one evaluation cycle has completed"""
    status = _state['status']
    if status is not None:
        snap = status.snapshot()
        if snap['cycles_total'] > 0:
            return jsonify({
                "status": "ready",
                "last_cycle_at": snap['last_cycle_at'],
                "last_outcome": snap['last_outcome'],
                "timestamp": _now_iso()
            })
    return jsonify({
        "status": "not_ready",
        "reason": "No evaluation cycle completed yet",
        "timestamp": _now_iso()
    }), 503


@app.route('/api/status')
def get_status():
    """Controller settings, last cycle outcome and tracked nodes"""
    status = _state['status']
    settings = _state['settings']
    return jsonify({
        'settings': settings.summary() if settings is not None else {},
        'controller': status.snapshot() if status is not None else {},
        'tracked_nodes': _tracked_nodes(),
        'timestamp': _now_iso(),
    })


@app.route('/metrics')
def metrics():
    """Prometheus metrics endpoint for self-monitoring"""
    status = _state['status']
    snap = status.snapshot() if status is not None else {
        'cycles_total': 0, 'errors_total': 0, 'cordons_total': 0,
        'skipped_total': 0, 'last_cycle_at': None, 'uptime_seconds': 0.0,
    }
    tracker = _state['tracker']
    tracked = len(tracker) if tracker is not None else 0
    last_cycle = datetime.fromisoformat(snap['last_cycle_at']).timestamp() if snap['last_cycle_at'] else 0

    lines = [
        "# HELP node_quarantine_cycles_total Evaluation cycles run",
        "# TYPE node_quarantine_cycles_total counter",
        f"node_quarantine_cycles_total {snap['cycles_total']}",
        "",
        "# HELP node_quarantine_errors_total Evaluation cycles that failed",
        "# TYPE node_quarantine_errors_total counter",
        f"node_quarantine_errors_total {snap['errors_total']}",
        "",
        "# HELP node_quarantine_cordons_total Nodes cordoned (including dry run)",
        "# TYPE node_quarantine_cordons_total counter",
        f"node_quarantine_cordons_total {snap['cordons_total']}",
        "",
        "# HELP node_quarantine_skipped_total Cycles skipped at or below the minimum node count",
        "# TYPE node_quarantine_skipped_total counter",
        f"node_quarantine_skipped_total {snap['skipped_total']}",
        "",
        "# HELP node_quarantine_tracked_nodes Nodes currently tracked as underutilized",
        "# TYPE node_quarantine_tracked_nodes gauge",
        f"node_quarantine_tracked_nodes {tracked}",
        "",
        "# HELP node_quarantine_last_cycle_timestamp_seconds Unix time of the last finished cycle",
        "# TYPE node_quarantine_last_cycle_timestamp_seconds gauge",
        f"node_quarantine_last_cycle_timestamp_seconds {last_cycle:.0f}",
        "",
        "# HELP node_quarantine_uptime_seconds Controller uptime in seconds",
        "# TYPE node_quarantine_uptime_seconds gauge",
        f"node_quarantine_uptime_seconds {snap['uptime_seconds']:.2f}",
    ]
    return Response('\n'.join(lines) + '\n', mimetype='text/plain')


def serve_in_background(port: int, host: str = '0.0.0.0') -> threading.Thread:
    """Run the Flask app in a daemon thread"""
    thread = threading.Thread(
        target=app.run,
        kwargs={'host': host, 'port': port, 'debug': False, 'use_reloader': False},
        name='status-server',
        daemon=True,
    )
    thread.start()
    logger.info(f"Status server listening on {host}:{port} (/health, /ready, /api/status, /metrics)")
    return thread
