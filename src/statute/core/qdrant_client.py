import logging

from qdrant_client import QdrantClient

from statute.settings import (
    QDRANT_API_KEY,
    QDRANT_CLOUD_API_KEY,
    QDRANT_CLOUD_URL,
    QDRANT_GRPC_PORT,
    QDRANT_HOST,
    USE_CLOUD_QDRANT,
)

logger = logging.getLogger(__name__)


def get_qdrant_client() -> QdrantClient:
    """
    Returns a Qdrant client based on the configured settings.

    Uses cloud Qdrant if USE_CLOUD_QDRANT=true, otherwise uses local.
    """
    if USE_CLOUD_QDRANT:
        if not QDRANT_CLOUD_URL or not QDRANT_CLOUD_API_KEY:
            raise ValueError(
                "USE_CLOUD_QDRANT is enabled but QDRANT_CLOUD_URL or "
                "QDRANT_CLOUD_API_KEY environment variables are not set"
            )
        logger.info(f"Connecting to Qdrant Cloud: {QDRANT_CLOUD_URL}")
        return QdrantClient(url=QDRANT_CLOUD_URL, api_key=QDRANT_CLOUD_API_KEY, timeout=120)

    logger.info(f"Connecting to local Qdrant: {QDRANT_HOST}")
    return QdrantClient(url=QDRANT_HOST, port=QDRANT_GRPC_PORT, api_key=QDRANT_API_KEY, timeout=120)
