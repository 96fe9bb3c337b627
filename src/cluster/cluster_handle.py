#!/usr/bin/env python3
"""
Authenticated cluster connection shared by every fleet component.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from src.orchestration.errors import ClusterConnectionError

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"
DEFAULT_POD_PREFIX = "jmeter-worker"


@dataclass(frozen=True)
class ClusterHandle:
    """Authenticated client bound to the namespace the fleet lives in."""
    api_client: client.ApiClient
    namespace: str = DEFAULT_NAMESPACE
    context_name: Optional[str] = None
    pod_prefix: str = DEFAULT_POD_PREFIX

    @property
    def core_v1(self) -> client.CoreV1Api:
        return client.CoreV1Api(self.api_client)


def load_cluster_handle(kubeconfig_path: Optional[str] = None,
                        context: Optional[str] = None,
                        namespace: str = DEFAULT_NAMESPACE,
                        pod_prefix: str = DEFAULT_POD_PREFIX) -> ClusterHandle:
    """Build a handle from a kubeconfig, falling back to in-cluster config."""
    try:
        if kubeconfig_path or context:
            api_client = config.new_client_from_config(
                config_file=kubeconfig_path,
                context=context
            )
            logger.info(f"Loaded Kubernetes configuration (context: {context or 'current'})")
        else:
            try:
                config.load_incluster_config()
                logger.info("Loaded in-cluster Kubernetes configuration")
                api_client = client.ApiClient()
            except ConfigException:
                api_client = config.new_client_from_config()
                logger.info("Loaded local Kubernetes configuration")
    except (ConfigException, OSError) as e:
        logger.error(f"Failed to initialize Kubernetes client: {e}")
        raise ClusterConnectionError(f"failed to load cluster configuration: {e}") from e

    return ClusterHandle(
        api_client=api_client,
        namespace=namespace,
        context_name=context,
        pod_prefix=pod_prefix
    )
