"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Resolve .env from the project root regardless of CWD
_ENV_FILE = Path(__file__).resolve().parents[3] / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./spot_handoff.db"

    # Geocoding
    google_maps_api_key: str = ""
    geocode_timeout_seconds: float = 10.0

    # Commercial terms
    min_price: float = 1.0
    max_price: float = 20.0

    # Timing (minutes)
    max_spot_duration: int = 60
    min_lead_minutes: int = 5
    max_lead_minutes: int = 240

    # Location verification: 200 ft
    location_tolerance_meters: float = 61.0
    search_radius_miles: float = 0.5

    # Expiration sweep
    sweep_interval_seconds: int = 60

    # Change feed
    feed_queue_size: int = 256

    # Auth / JWT (tokens are issued by the identity provider)
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # CORS / Frontend
    cors_origins: str = "http://localhost:3000"

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        In debug mode, returns ["*"] to allow any origin (LAN IPs, etc.).
        """
        if self.debug:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
