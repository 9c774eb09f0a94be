"""
Tests for the Kubernetes API adapter
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import urllib3
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from cluster import kube_client as kc
from cluster.kube_client import KubeClient, KubeError, load_kube_config
from config import QuarantineError


@pytest.fixture
def core_api():
    return MagicMock()


class TestListNodes:

    def test_returns_records_with_selector(self, core_api, v1_node):
        core_api.list_node.return_value = SimpleNamespace(items=[v1_node('n1'), v1_node('n2')])
        kube = KubeClient(core_api, label_selector='group=quarantine', timeout=10)

        nodes = kube.list_nodes()

        assert [n['name'] for n in nodes] == ['n1', 'n2']
        core_api.list_node.assert_called_once_with(label_selector='group=quarantine', _request_timeout=10)

    def test_api_error_wrapped(self, core_api):
        core_api.list_node.side_effect = ApiException(status=403, reason='Forbidden')
        with pytest.raises(KubeError, match='403'):
            KubeClient(core_api).list_nodes()

    def test_connection_error_wrapped(self, core_api):
        core_api.list_node.side_effect = urllib3.exceptions.MaxRetryError(None, '/api/v1/nodes')
        with pytest.raises(KubeError):
            KubeClient(core_api).list_nodes()


class TestListPods:

    def test_field_selector_and_terminal_filtering(self, core_api, v1_pod):
        core_api.list_pod_for_all_namespaces.return_value = SimpleNamespace(items=[
            v1_pod('a', [{'cpu': '1'}]),
            v1_pod('b', [{'cpu': '1'}], phase='Succeeded'),
        ])
        pods = KubeClient(core_api).list_pods_on_node('n1')

        assert [p['name'] for p in pods] == ['a']
        kwargs = core_api.list_pod_for_all_namespaces.call_args[1]
        assert kwargs['field_selector'] == 'spec.nodeName=n1'

    def test_api_error_wrapped(self, core_api):
        core_api.list_pod_for_all_namespaces.side_effect = ApiException(status=500, reason='boom')
        with pytest.raises(KubeError, match='n1'):
            KubeClient(core_api).list_pods_on_node('n1')


class TestCordon:

    def test_patches_unschedulable(self, core_api):
        KubeClient(core_api).cordon_node('n1')
        args = core_api.patch_node.call_args[0]
        assert args == ('n1', {'spec': {'unschedulable': True}})

    def test_dry_run_does_not_patch(self, core_api, caplog):
        caplog.set_level('INFO')
        KubeClient(core_api, dry_run=True).cordon_node('n1')
        core_api.patch_node.assert_not_called()
        assert 'DRY RUN - would have cordoned node n1' in caplog.text

    def test_patch_failure_raises(self, core_api):
        core_api.patch_node.side_effect = ApiException(status=404, reason='Not Found')
        with pytest.raises(KubeError):
            KubeClient(core_api).cordon_node('gone')


def test_kube_error_is_quarantine_error():
    assert issubclass(KubeError, QuarantineError)


class TestLoadKubeConfig:

    @patch.object(kc.kube_config, 'load_incluster_config')
    @patch.object(kc.kube_config, 'load_kube_config')
    def test_explicit_path(self, mock_load, mock_incluster):
        load_kube_config('/tmp/kubeconfig')
        mock_load.assert_called_once_with(config_file='/tmp/kubeconfig')
        mock_incluster.assert_not_called()

    @patch.object(kc.kube_config, 'load_incluster_config')
    @patch.object(kc.kube_config, 'load_kube_config')
    def test_falls_back_to_default_kubeconfig(self, mock_load, mock_incluster):
        mock_incluster.side_effect = ConfigException('not in cluster')
        load_kube_config()
        mock_load.assert_called_once_with()

    @patch.object(kc.kube_config, 'load_incluster_config')
    @patch.object(kc.kube_config, 'load_kube_config')
    def test_no_credentials_raises(self, mock_load, mock_incluster):
        mock_incluster.side_effect = ConfigException('not in cluster')
        mock_load.side_effect = ConfigException('no kubeconfig')
        with pytest.raises(KubeError):
            load_kube_config()
