import os
from dotenv import load_dotenv

# Load environment variables from the project root
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env"))

DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    pg_host = os.getenv("PGHOST")
    pg_port = os.getenv("PGPORT", "5432")
    pg_db = os.getenv("PGDATABASE")
    pg_user = os.getenv("PGUSER")
    pg_password = os.getenv("PGPASSWORD")

    if all([pg_host, pg_db, pg_user, pg_password]):
        DATABASE_URL = (
            f"postgresql+asyncpg://{pg_user}:{pg_password}@{pg_host}:{pg_port}/{pg_db}"
        )

if DATABASE_URL is None:
    raise ValueError(
        "DATABASE_URL is not configured. Set DATABASE_URL explicitly or provide "
        "PGHOST/PGPORT/PGDATABASE/PGUSER/PGPASSWORD environment variables."
    )


def _bool_env(name: str, default: str = "1") -> bool:
    value = os.getenv(name, default).strip().lower()
    return value not in {"0", "false", "no"}


DATABASE_ECHO = _bool_env("DATABASE_ECHO", "false")
API_AUTH_TOKEN = os.getenv("API_AUTH_TOKEN")
APP_ENV = os.getenv("APP_ENV", "prod").lower()
IS_DEV_MODE = APP_ENV in {"dev", "development"}
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Fallback identity used by dev mode and offline scripts
DEFAULT_TENANT_ID = os.getenv("DEFAULT_TENANT_ID", "default")
DEFAULT_USER_ID = os.getenv("DEFAULT_USER_ID", "system")

# Association query cache
ASSOCIATION_CACHE_TTL_SECONDS = float(os.getenv("ASSOCIATION_CACHE_TTL_SECONDS", "300"))
ASSOCIATION_CACHE_MAX_ENTRIES = int(os.getenv("ASSOCIATION_CACHE_MAX_ENTRIES", "50"))

# Deal association backfill job
MIGRATION_BATCH_SIZE = int(os.getenv("MIGRATION_BATCH_SIZE", "200"))
