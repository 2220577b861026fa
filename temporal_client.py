"""Temporal client factory.

Connects to Temporal using TEMPORAL_* settings (see core.config). An API key
selects Temporal Cloud (TLS + key auth); without one a plain local dev
server connection is made.
"""

from typing import Optional

from temporalio.client import Client

from core.config import Settings, get_settings


async def get_temporal_client(settings: Optional[Settings] = None) -> Client:
    """Create and return a connected Temporal client.

    Returns:
        Configured Temporal client

    Raises:
        ValueError: If TEMPORAL_ENDPOINT is not set
    """
    settings = settings or get_settings()

    if not settings.temporal_endpoint:
        raise ValueError(
            "TEMPORAL_ENDPOINT environment variable not set. "
            "Set to your Temporal endpoint (e.g., 'localhost:7233')"
        )

    if settings.temporal_api_key:
        return await Client.connect(
            target_host=settings.temporal_endpoint,
            namespace=settings.temporal_namespace,
            tls=True,
            api_key=settings.temporal_api_key,
        )

    return await Client.connect(
        target_host=settings.temporal_endpoint,
        namespace=settings.temporal_namespace,
    )
