import os
from functools import lru_cache
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Settings:
    """Application settings loaded from environment variables with defaults.

    Everything can be overridden through the environment (or a local .env
    file) so the same code runs against a developer SQLite file or a shared
    MySQL catalog.
    """

    # Project metadata
    PROJECT_NAME = "Merchant Price Book"
    PROJECT_VERSION = "0.1.0"

    # Database Settings
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "3306")
    DB_NAME = os.getenv("DB_NAME", "pricebook")
    DB_USER = os.getenv("DB_USER", "user")
    DB_PASS = os.getenv("DB_PASSWORD", "password")

    # Catalog behaviour
    FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "10"))
    BATCH_CHUNK_SIZE = int(os.getenv("BATCH_CHUNK_SIZE", "50"))
    SEED_FILE = os.getenv("SEED_FILE")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @property
    def DATABASE_URL(self) -> str:
        """SQLAlchemy connection string; DATABASE_URL wins over the DB_* parts."""
        explicit = os.getenv("DATABASE_URL")
        if explicit:
            return explicit
        return f"mysql+pymysql://{self.DB_USER}:{self.DB_PASS}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


# For direct access in other modules
settings = get_settings()
