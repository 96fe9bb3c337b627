#!/usr/bin/env python3

import logging

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from src.cluster.cluster_handle import ClusterHandle
from src.orchestration.errors import ClusterConnectionError

logger = logging.getLogger(__name__)

HEALTH_PATH = "/healthz"
HEALTHY_PAYLOAD = "ok"


def check_connection(handle: ClusterHandle) -> bool:
    """Single /healthz request against the control plane. Never retries."""
    try:
        response = handle.api_client.call_api(
            HEALTH_PATH, 'GET',
            auth_settings=['BearerToken'],
            _preload_content=False,
            _return_http_data_only=True
        )
        content = response.data.decode('utf-8')
    except (ApiException, HTTPError, OSError) as e:
        raise ClusterConnectionError(f"failed to connect to cluster. Reason: {e}") from e

    if content != HEALTHY_PAYLOAD:
        raise ClusterConnectionError(f"cluster not healthy (health endpoint returned {content!r})")

    logger.info(f"Cluster connection healthy (context: {handle.context_name or 'current'})")
    return True
