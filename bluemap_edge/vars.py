import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "bluemap-edge")

# Bluemap data directory; the served web root is BLUEMAP_DIR/web
BLUEMAP_DIR = os.environ.get("BLUEMAP_DIR", "")

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "31283"))

# Bluemap's integrated live server
BLUEMAP_HOST = os.environ.get("BLUEMAP_HOST", "127.0.0.1")
BLUEMAP_PORT = int(os.environ.get("BLUEMAP_PORT", "8100"))

# TLS is only enabled when both are set
TLS_CERT = os.environ.get("TLS_CERT", "")
TLS_KEY = os.environ.get("TLS_KEY", "")

PROXY_TIMEOUT = float(os.environ.get("PROXY_TIMEOUT", "300"))  # 5 minutes default
METRICS_ENABLED = os.environ.get("METRICS_ENABLED", "false").lower() == "true"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info").lower()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

# Linked from the User-Agent sent to Bluemap; point it at your deployment's own page
HOMEPAGE_URL = os.environ.get("HOMEPAGE_URL", "https://bluemap.bluecolored.de/")
