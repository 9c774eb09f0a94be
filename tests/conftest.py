"""
Test fixtures and configuration for pytest
"""
from datetime import datetime, timedelta, timezone

import pytest
from kubernetes import client


NOW = datetime(2026, 1, 4, 10, 0, 0, tzinfo=timezone.utc)

_SETTINGS_ENV = (
    "NODE_LABELS", "UTILIZATION_THRESHOLD", "UNNEEDED_TIME_SECONDS",
    "EVALUATION_PERIOD_SECONDS", "ERROR_BACKOFF_SECONDS", "CORDON_BACKOFF_SECONDS",
    "MIN_NODES", "DRY_RUN", "KUBECONFIG", "STATUS_PORT", "KUBE_TIMEOUT_SECONDS",
    "QUARANTINE_CONFIG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of settings-sensitive tests"""
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_node():
    """Factory for node records as produced by cluster.discovery"""
    def _make(name, cpu=4.0, memory=8 * 1024 ** 3, ready=True, unschedulable=False,
              age=timedelta(hours=1)):
        return {
            'name': name,
            'labels': {'kubernetes.io/hostname': name},
            'created_at': NOW - age if age is not None else None,
            'ready': ready,
            'unschedulable': unschedulable,
            'cpu_allocatable': cpu,
            'memory_allocatable': memory,
            'cpu_capacity': cpu,
            'memory_capacity': memory,
        }
    return _make


@pytest.fixture
def make_pod():
    """Factory for pod records; each request pair becomes one container"""
    def _make(name, *requests, phase='Running', namespace='default'):
        return {
            'name': name,
            'namespace': namespace,
            'phase': phase,
            'containers': [
                {'cpu_request': cpu, 'memory_request': mem} for cpu, mem in requests
            ],
        }
    return _make


@pytest.fixture
def v1_node():
    """Factory for kubernetes.client.V1Node objects"""
    def _make(name, allocatable=None, capacity=None, ready='True', unschedulable=None,
              created=NOW - timedelta(hours=1)):
        conditions = [client.V1NodeCondition(type='Ready', status=ready)] if ready is not None else None
        return client.V1Node(
            metadata=client.V1ObjectMeta(
                name=name,
                labels={'group': 'quarantine'},
                creation_timestamp=created,
            ),
            spec=client.V1NodeSpec(unschedulable=unschedulable),
            status=client.V1NodeStatus(
                allocatable=allocatable if allocatable is not None else {'cpu': '4', 'memory': '8Gi'},
                capacity=capacity if capacity is not None else {'cpu': '4', 'memory': '8Gi'},
                conditions=conditions,
            ),
        )
    return _make


@pytest.fixture
def v1_pod():
    """Factory for kubernetes.client.V1Pod objects"""
    def _make(name, requests_list, phase='Running', namespace='default'):
        containers = []
        for i, requests_ in enumerate(requests_list):
            containers.append(client.V1Container(
                name=f"c{i}",
                resources=client.V1ResourceRequirements(requests=requests_),
            ))
        return client.V1Pod(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            spec=client.V1PodSpec(containers=containers),
            status=client.V1PodStatus(phase=phase),
        )
    return _make


class FakeKube:
    """In-memory stand-in for cluster.kube_client.KubeClient"""

    def __init__(self, nodes=None, pods=None, dry_run=False):
        self.nodes = nodes or []
        self.pods = pods or {}
        self.dry_run = dry_run
        self.cordoned = []
        self.list_error = None
        self.cordon_error = None

    def list_nodes(self):
        if self.list_error:
            raise self.list_error
        return list(self.nodes)

    def list_pods_on_node(self, name):
        return list(self.pods.get(name, []))

    def cordon_node(self, name):
        if self.cordon_error:
            raise self.cordon_error
        if not self.dry_run:
            self.cordoned.append(name)
            for node in self.nodes:
                if node['name'] == name:
                    node['unschedulable'] = True


@pytest.fixture
def fake_kube():
    return FakeKube
