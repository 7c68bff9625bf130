"""Temporal client factory.

Temporal Cloud when TEMPORAL_API_KEY is set (TLS, optional mTLS client
certificate); otherwise a local development server without TLS.
"""

from pathlib import Path
from typing import Optional, Union

from temporalio.client import Client
from temporalio.service import TLSConfig

from core.config import AppConfig, load_config


DEFAULT_LOCAL_ENDPOINT = "localhost:7233"


def _tls(cert_path: Optional[str]) -> Union[bool, TLSConfig]:
    """TLS settings for Temporal Cloud.

    cert_path points to one PEM file holding the client certificate and
    its private key.
    """
    if not cert_path:
        return True
    pem = Path(cert_path).read_bytes()
    return TLSConfig(client_cert=pem, client_private_key=pem)


async def get_temporal_client(config: Optional[AppConfig] = None) -> Client:
    """Create and return a connected Temporal client.

    Args:
        config: Application config (defaults to load_config())

    Raises:
        ValueError: TEMPORAL_API_KEY is set without TEMPORAL_ENDPOINT
    """
    config = config or load_config()

    if not config.temporal_api_key:
        return await Client.connect(
            config.temporal_endpoint or DEFAULT_LOCAL_ENDPOINT,
            namespace=config.temporal_namespace,
        )

    if not config.temporal_endpoint:
        raise ValueError(
            "TEMPORAL_ENDPOINT environment variable not set. "
            "Set to your Temporal Cloud endpoint (e.g., 'ns.acct.tmprl.cloud:7233')"
        )

    return await Client.connect(
        config.temporal_endpoint,
        namespace=config.temporal_namespace,
        tls=_tls(config.temporal_cert_path),
        api_key=config.temporal_api_key,
    )
