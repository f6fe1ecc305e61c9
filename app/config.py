import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./teori.db")

# Teori credentials are read per request from site_settings, with TEORI_* env
# vars as fallback (see app.domain.payments.settings)
TEORI_HTTP_TIMEOUT = float(os.getenv("TEORI_HTTP_TIMEOUT", "30"))

# Shared token for the admin diagnostics endpoint. Unset disables the endpoint.
ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
