from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    google_cloud_project: str = ""
    google_application_credentials: str = ""
    firestore_emulator_host: Optional[str] = None
    rooms_collection: str = "rooms"
    # CORS origins — set ALLOWED_ORIGINS env var for production (comma-separated)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    # Extra production origin (e.g. Cloud Run URL); appended to allowed_origins
    extra_origin: str = ""
    # Host waits this long after seeing a complete vote table before re-checking
    # and committing the derived phase transition.
    host_settle_ms: int = 150
    min_players: int = 2
    max_name_length: int = 10
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
