import os
from pathlib import Path
from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:4000").rstrip("/")
API_PREFIX = os.getenv("API_PREFIX", "/api")
API_ACCESS_TOKEN = os.getenv("API_ACCESS_TOKEN")
API_REFRESH_TOKEN = os.getenv("API_REFRESH_TOKEN")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30"))

# Seconds to wait for a push result before querying M-Pesa directly
FALLBACK_TIMEOUT = float(os.getenv("FALLBACK_TIMEOUT", "60"))

SOCKET_URL = os.getenv("SOCKET_URL", API_BASE_URL)
SOCKET_RECONNECTION_ATTEMPTS = int(os.getenv("SOCKET_RECONNECTION_ATTEMPTS", "5"))
SOCKET_RECONNECTION_DELAY = float(os.getenv("SOCKET_RECONNECTION_DELAY", "1"))
SOCKET_CONNECT_TIMEOUT = float(os.getenv("SOCKET_CONNECT_TIMEOUT", "20"))

# Seconds a resolved session stays readable over HTTP before it is evicted
RESOLVED_SESSION_TTL = float(os.getenv("RESOLVED_SESSION_TTL", "300"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
