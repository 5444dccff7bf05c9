# chat_tree/config.py
"""Configuration management via environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
_env_path = Path(__file__).parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


def get_data_dir() -> Path:
    """Directory holding the local database file."""
    return Path(os.getenv("CHAT_TREE_DATA_DIR", Path.home() / ".chat_tree"))


def get_database_url() -> str:
    """Database URL from the environment, defaulting to a local SQLite file."""
    url = os.getenv("CHAT_TREE_DATABASE_URL")
    if url:
        return url
    
    return f"sqlite:///{get_data_dir() / 'chat_tree.db'}"


def get_maintenance_steps() -> int | None:
    """Default step budget for consistency checks and repair (None = unbounded)."""
    value = os.getenv("CHAT_TREE_MAINTENANCE_STEPS", "").strip()
    if not value:
        return None
    return int(value)


def get_lock_timeout() -> float:
    """Seconds to wait for the store lock before giving up."""
    return float(os.getenv("CHAT_TREE_LOCK_TIMEOUT", "30"))


# Default URL for imports
DATABASE_URL = get_database_url()
