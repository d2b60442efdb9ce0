import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "edgeflow-proxy")
PROXY_BASE_PATH = os.environ.get("PROXY_BASE_PATH", "")

# Wall-clock budget for a single origin fetch, in seconds
PROXY_TIMEOUT = float(os.environ.get("PROXY_TIMEOUT", "30"))
PROXY_ENGINE_NAME = os.environ.get("PROXY_ENGINE_NAME", "edgeflow-scramjet")

CACHE_DB_PATH = os.getenv("CACHE_DB_PATH", "/tmp/edgeflow.db")
CACHE_KEY_STRATEGY = os.getenv("CACHE_KEY_STRATEGY", "timestamped").lower()
CONFIG_PATH = os.getenv("CONFIG_PATH", "")
ACTIVITY_LOG_TTL_DAYS = int(os.getenv("ACTIVITY_LOG_TTL_DAYS", "7"))

# Client-side interception
PROXY_ENDPOINT_URL = os.getenv("PROXY_ENDPOINT_URL", "http://localhost:8000/api/proxy")
PROXY_CONTROL_HOST = os.getenv("PROXY_CONTROL_HOST", "localhost")
PROXY_MANAGEMENT_PREFIXES = [
    p.strip()
    for p in os.getenv("PROXY_MANAGEMENT_PREFIXES", "/api/,/_edgeflow/").split(",")
    if p.strip()
]
CLIENT_CACHE_SIZE = int(os.getenv("CLIENT_CACHE_SIZE", "256"))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
