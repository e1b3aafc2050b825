import logging
import os

from sqlmodel import SQLModel, create_engine

logger = logging.getLogger(__name__)

# Local "device" store: one SQLite file holding the key-value blobs
LOCAL_STORE_PATH = os.getenv("LOCAL_STORE_PATH", "./classroom_local.db")

# Remote per-account document store, default to SQLite for local dev
db_path = os.getenv("DATABASE_PATH", "./classroom_remote.db")
env = os.getenv("ENV", os.getenv("RENDER", "").lower() or "dev")

if os.getenv("DATABASE_URL"):
    DATABASE_URL = os.getenv("DATABASE_URL")
else:
    # Guard against SQLite fallback in production
    if env in ("prod", "production") or os.getenv("RENDER"):
        raise RuntimeError(
            "DATABASE_URL missing in production; refusing to start with SQLite. "
            "Please configure DATABASE_URL environment variable."
        )
    DATABASE_URL = f"sqlite:///{db_path}"

# PostgreSQL uses postgresql:// but Render provides postgres://
if DATABASE_URL and DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# Threads used to issue independent remote writes concurrently
WRITE_WORKERS = int(os.getenv("WRITE_WORKERS", "4"))

# Log database driver for observability
db_driver = DATABASE_URL.split(":", 1)[0] if ":" in DATABASE_URL else "unknown"
logger.info(f"DB_URL_DRIVER={db_driver}")


def make_engine(url: str):
    """Create an engine. SQLite connections may be used from writer threads."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, connect_args=connect_args)


local_engine = make_engine(f"sqlite:///{LOCAL_STORE_PATH}")
remote_engine = make_engine(DATABASE_URL)


def create_db_and_tables(engine=None):
    """Create tables if they don't exist.
    This is safe to call multiple times - it won't wipe existing data.
    """
    engines = [engine] if engine is not None else [local_engine, remote_engine]
    for eng in engines:
        SQLModel.metadata.create_all(eng)
