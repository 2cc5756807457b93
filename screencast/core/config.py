import os
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    API_PORT: int = int(os.getenv("API_PORT", 8000))
    # Public origin used for share links - resolved by TunnelManager when unset
    BASE_URL: Optional[str] = os.getenv("BASE_URL")
    ENABLE_TUNNEL: bool = False

    # Object storage: "supabase" or "local"
    STORAGE_BACKEND: str = "local"
    SUPABASE_URL: Optional[str] = os.getenv("SUPABASE_URL")
    SUPABASE_KEY: Optional[str] = os.getenv("SUPABASE_KEY")
    STORAGE_BUCKET: str = "recordings"
    LOCAL_STORAGE_DIR: str = "./data/recordings"

    # Persistence strategy: "records" (SQL tables) or "blobs" (JSON sidecars)
    PERSISTENCE: str = "records"
    DATABASE_URL: str = "sqlite:///./screencast.db"

    THUMBNAIL_OFFSET: float = 2.0
    THUMBNAIL_WIDTH: int = 640
    THUMBNAIL_HEIGHT: int = 360
    MAX_UPLOAD_BYTES: int = 2 * 1024 * 1024 * 1024

    # Desktop recorder (screencast-record)
    CAPTURE_MONITOR: int = 1
    WEBCAM_DEVICE: Optional[str] = None  # platform default when unset
    WEBCAM_FORMAT: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

settings = Settings()
