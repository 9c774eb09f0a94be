"""
Kubernetes API adapter: node source, pod source and cordon action.
"""
import logging
from typing import Any, Dict, List, Optional

import urllib3
from kubernetes import client, config as kube_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from cluster.discovery import node_records, active_pod_records
from config import QuarantineError

logger = logging.getLogger(__name__)


class KubeError(QuarantineError):
    """Raised when a call to the Kubernetes API fails"""
    pass


def load_kube_config(kubeconfig: Optional[str] = None) -> None:
    """Load cluster credentials.

    An explicit kubeconfig path wins; otherwise try the in-cluster service
    account and fall back to the default kubeconfig location.
    """
    try:
        if kubeconfig:
            kube_config.load_kube_config(config_file=kubeconfig)
            return
        try:
            kube_config.load_incluster_config()
        except ConfigException:
            kube_config.load_kube_config()
    except (ConfigException, OSError) as e:
        raise KubeError(f"could not load cluster credentials: {e}")


class KubeClient:
    """Thin wrapper over CoreV1Api used by the evaluation loop

    Args:
        core_api: CoreV1Api instance (built from the loaded config if omitted)
        label_selector: restricts which nodes are listed
        dry_run: when True, cordon_node logs and returns without patching
        timeout: per-request timeout in seconds
    """

    def __init__(
        self,
        core_api: Optional[client.CoreV1Api] = None,
        label_selector: str = "",
        dry_run: bool = False,
        timeout: int = 30
    ):
        self.core_api = core_api if core_api is not None else client.CoreV1Api()
        self.label_selector = label_selector
        self.dry_run = dry_run
        self.timeout = timeout

    def list_nodes(self) -> List[Dict[str, Any]]:
        """List nodes matching the label selector as node records"""
        try:
            resp = self.core_api.list_node(
                label_selector=self.label_selector,
                _request_timeout=self.timeout
            )
        except ApiException as e:
            raise KubeError(f"error listing nodes: {e.status} {e.reason}")
        except urllib3.exceptions.HTTPError as e:
            raise KubeError(f"error listing nodes: {e}")
        return node_records(resp.items or [])

    def list_pods_on_node(self, name: str) -> List[Dict[str, Any]]:
        """List non-terminated pods scheduled to a node, across all namespaces"""
        try:
            resp = self.core_api.list_pod_for_all_namespaces(
                field_selector=f"spec.nodeName={name}",
                _request_timeout=self.timeout
            )
        except ApiException as e:
            raise KubeError(f"error listing pods on node {name}: {e.status} {e.reason}")
        except urllib3.exceptions.HTTPError as e:
            raise KubeError(f"error listing pods on node {name}: {e}")
        return active_pod_records(resp.items or [])

    def cordon_node(self, name: str) -> None:
        """Mark a node unschedulable

        Raises:
            KubeError: If the patch fails
        """
        if self.dry_run:
            logger.info(f"DRY RUN - would have cordoned node {name}")
            return

        body = {'spec': {'unschedulable': True}}
        try:
            self.core_api.patch_node(name, body, _request_timeout=self.timeout)
        except ApiException as e:
            raise KubeError(f"error cordoning node {name}: {e.status} {e.reason}")
        except urllib3.exceptions.HTTPError as e:
            raise KubeError(f"error cordoning node {name}: {e}")

        logger.info(f"Successfully cordoned node {name}")
