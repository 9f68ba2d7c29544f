"""Process-wide settings read from the environment (.env is loaded by app.py)."""

import os

DATA_DIR = os.path.join(os.path.dirname(__file__), "data")

# -- Hub ---------------------------------------------------------------------
LIGHT_HUB = os.environ.get("LIGHT_HUB", "dirigera")  # dirigera | govee
DIRIGERA_GATEWAY_IP = os.environ.get("DIRIGERA_GATEWAY_IP", "")
DIRIGERA_ACCESS_TOKEN = os.environ.get("DIRIGERA_ACCESS_TOKEN", "")
HUB_TIMEOUT = float(os.environ.get("HUB_TIMEOUT", "5"))  # seconds per hub call
HEALTH_CHECK_INTERVAL = float(os.environ.get("HEALTH_CHECK_INTERVAL", "60"))

# -- Actuation -----------------------------------------------------------------
COMMANDS_PER_SECOND = float(os.environ.get("COMMANDS_PER_SECOND", "10"))

# -- Audio analysis ------------------------------------------------------------
AUDIO_PIPE_PATH = os.environ.get("AUDIO_PIPE_PATH", "/tmp/lightsync-pipe")
AUDIO_ANALYSIS = os.environ.get("AUDIO_ANALYSIS", "0").strip().lower() in {"1", "true", "yes", "on"}

# -- Storage -------------------------------------------------------------------
DB_PATH = os.environ.get("LIGHTSYNC_DB_PATH", os.path.join(DATA_DIR, "lightsync.db"))

# -- Server --------------------------------------------------------------------
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
PORT = int(os.environ.get("PORT", "5000"))
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")
IS_DEV = os.environ.get("LIGHTSYNC_ENV") == "dev"
