"""Temporal client factory.

Connects to Temporal Cloud when an API key is configured, otherwise to a
local dev server (``temporal server start-dev``).
"""

import os
import ssl
from typing import Optional

from temporalio.client import Client

from core.config import ConsolidationConfig, load_config

LOCAL_ENDPOINT = "localhost:7233"


async def get_temporal_client(config: Optional[ConsolidationConfig] = None) -> Client:
    """Create and return a Temporal client.

    Reads configuration from ConsolidationConfig (environment variables):
    - TEMPORAL_ENDPOINT: Temporal endpoint (e.g., "temporal.example.com:7233")
    - TEMPORAL_NAMESPACE: Namespace (e.g., "default")
    - TEMPORAL_API_KEY: API key for Cloud
    - TEMPORAL_CERT_PATH: Path to client certificate (optional, for mTLS)

    Returns:
        Connected Temporal client

    Raises:
        ValueError: If an API key is set without an endpoint
    """
    config = config or load_config()
    endpoint = config.temporal_endpoint
    api_key = config.temporal_api_key

    if not api_key:
        return await Client.connect(endpoint or LOCAL_ENDPOINT, namespace=config.temporal_namespace)

    if not endpoint:
        raise ValueError(
            "TEMPORAL_ENDPOINT environment variable not set. "
            "Set to your Temporal Cloud endpoint (e.g., 'temporal.example.com:7233')"
        )

    tls_config = ssl.create_default_context()
    cert_path = os.getenv("TEMPORAL_CERT_PATH")
    if cert_path:
        tls_config.load_cert_chain(cert_path)

    return await Client.connect(
        target_host=endpoint,
        namespace=config.temporal_namespace,
        tls=tls_config,
        api_key=api_key,
    )
