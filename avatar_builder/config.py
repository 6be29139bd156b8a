import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _data_dir() -> Path:
    return Path(os.environ.get("DATA_DIR", BASE_DIR / "data"))


def _default_sqlite_uri() -> str:
    return f"sqlite:///{_data_dir() / 'avatar-builder.db'}"


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    DATA_DIR = str(_data_dir())
    GENERATED_DIR = os.environ.get("GENERATED_DIR", str(_data_dir() / "generated"))
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_CONTENT_LENGTH = 100 * 1024 * 1024
    IMAGES_PAGE_SIZE = int(os.environ.get("IMAGES_PAGE_SIZE", "50"))
    ORGANIZE_FILES_ON_STARTUP = os.environ.get("ORGANIZE_FILES_ON_STARTUP", "true").lower() == "true"

    ABLY_API_KEY = os.environ.get("ABLY_API_KEY")
    ABLY_REST_URL = os.environ.get("ABLY_REST_URL", "https://rest.ably.io")
    REALTIME_TIMEOUT = float(os.environ.get("REALTIME_TIMEOUT", "5"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    ORGANIZE_FILES_ON_STARTUP = False
    ABLY_API_KEY = None
