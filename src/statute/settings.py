import os

# Qdrant configuration
USE_CLOUD_QDRANT = os.environ.get("USE_CLOUD_QDRANT", "false").lower() == "true"

# Local Qdrant (default)
QDRANT_HOST = os.environ.get("QDRANT_HOST", "http://localhost:6333")
QDRANT_GRPC_PORT = int(os.environ.get("QDRANT_GRPC_PORT", "6334"))
QDRANT_API_KEY = os.environ.get("QDRANT_API_KEY", None)

# Cloud Qdrant (when USE_CLOUD_QDRANT=true)
QDRANT_CLOUD_URL = os.environ.get("QDRANT_CLOUD_URL")
QDRANT_CLOUD_API_KEY = os.environ.get("QDRANT_CLOUD_API_KEY")

VECTOR_COLLECTION = os.environ.get("VECTOR_COLLECTION", "ordinances")

# Embedding configuration (OpenAI, or Azure OpenAI when the endpoint is set)
EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "text-embedding-3-large")
EMBEDDING_DIMENSIONS = int(os.environ.get("EMBEDDING_DIMENSIONS", "3072"))
EMBEDDING_BATCH_SIZE = int(os.environ.get("EMBEDDING_BATCH_SIZE", "64"))
EMBEDDING_MAX_TOKENS = 8191
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
AZURE_OPENAI_ENDPOINT = os.environ.get("AZURE_OPENAI_ENDPOINT")
AZURE_OPENAI_API_KEY = os.environ.get("AZURE_OPENAI_API_KEY")
AZURE_OPENAI_API_VERSION = os.environ.get("AZURE_OPENAI_API_VERSION", "2024-02-01")

# Document store: "disk" (diskcache) or "azure" (blob storage)
DOCUMENT_STORE_BACKEND = os.environ.get("DOCUMENT_STORE_BACKEND", "disk")
DOCUMENT_STORE_DIR = os.environ.get(
    "DOCUMENT_STORE_DIR", os.path.join(os.getcwd(), "data", "documents")
)
AZURE_STORAGE_CONNECTION_STRING = os.environ.get("AZURE_STORAGE_CONNECTION_STRING")
AZURE_STORAGE_CONTAINER_NAME = os.environ.get("AZURE_STORAGE_CONTAINER_NAME", "ordinances")

# Fetch client
USER_AGENT = os.environ.get("USER_AGENT", "StatuteIngestBot/1.0 (legal research)")
FETCH_MIN_DELAY = float(os.environ.get("FETCH_MIN_DELAY", "0.2"))
FETCH_MAX_RETRIES = int(os.environ.get("FETCH_MAX_RETRIES", "3"))
FETCH_BASE_BACKOFF = float(os.environ.get("FETCH_BASE_BACKOFF", "1.0"))
FETCH_MAX_BACKOFF = float(os.environ.get("FETCH_MAX_BACKOFF", "8.0"))
FETCH_TIMEOUT = float(os.environ.get("FETCH_TIMEOUT", "30"))
FETCH_CACHE_ENABLED = os.environ.get("FETCH_CACHE_ENABLED", "false").lower() == "true"
FETCH_CACHE_DIR = os.environ.get("FETCH_CACHE_DIR", os.path.join(os.getcwd(), "data", "cache", "http"))
FETCH_CACHE_TTL = int(os.environ.get("FETCH_CACHE_TTL", "28800"))  # 8 hours

# Rendering service (headless-browser scrape API returning markdown)
RENDER_SERVICE_URL = os.environ.get("RENDER_SERVICE_URL", "https://api.firecrawl.dev")
RENDER_SERVICE_API_KEY = os.environ.get("RENDER_SERVICE_API_KEY")
RENDER_SERVICE_TIMEOUT_MS = 60000
RENDER_CACHE_MAX_AGE_DAYS = int(os.environ.get("RENDER_CACHE_MAX_AGE_DAYS", "30"))

# Freshness notifier
FRESHNESS_NOTIFIER_URL = os.environ.get("FRESHNESS_NOTIFIER_URL")

# Pipeline behaviour
PARTIAL_FAILURE_POLICY = os.environ.get("PARTIAL_FAILURE_POLICY", "lenient")
UNIT_DELAY_SECONDS = float(os.environ.get("UNIT_DELAY_SECONDS", "1.0"))
