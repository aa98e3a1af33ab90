import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "chaos-proxy")
VIA_HEADER = os.getenv("VIA_HEADER", "chaos proxy")

# numeric values stay raw here; chaos_proxy.config parses and validates them
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = os.environ.get("PORT", "9005")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info").lower()

FAILURE_RATE = os.getenv("FAILURE_RATE", "0")
FAILURE_TRANSFER_RATE = os.getenv("FAILURE_TRANSFER_RATE", "0")
# prefix:code;prefix:code;...
FAIL_WITH_PREFIX = os.getenv("FAIL_WITH_PREFIX", "")

BUFFER_CHUNKED_BODY = os.getenv("BUFFER_CHUNKED_BODY", "false").lower() == "true"
UPSTREAM_TIMEOUT = os.getenv("UPSTREAM_TIMEOUT", "30")
COUNTERS_INTERVAL = os.getenv("COUNTERS_INTERVAL", "10")
CHUNK_SIZE = os.getenv("CHUNK_SIZE", "4096")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
