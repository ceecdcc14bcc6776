from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from datetime import timedelta


class Settings(BaseSettings):
    APP_NAME: str = "Person Identity Matcher"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Matching ---
    REID_FEATURE_DIMENSION: int = Field(default=512, gt=0, description="Embedding dimension agreed with the feature extractor.")
    REID_SIMILARITY_THRESHOLD: float = Field(default=0.80, description="Minimum cosine similarity for two vectors to be the same person.")
    REID_GALLERY_EMA_ALPHA: float = Field(default=0.9, description="Weight kept by the stored vector when a rematch is merged in. 0 replaces outright.")

    # --- Confirmation & activity ---
    REID_CONFIRMATION_SIGHTINGS: int = Field(default=3, ge=1, description="Sightings needed before an identity counts as confirmed.")
    REID_CURRENTLY_ACTIVE_WINDOW_SECONDS: float = Field(default=30.0, gt=0, description="A camera sighting newer than this counts as currently visible.")
    ENABLE_CONFIDENCE_CONFIRMATION: bool = False
    MIN_CONFIDENCE_FOR_CONFIRMATION: float = Field(default=0.25, ge=0.0, le=1.0)
    MIN_HIGH_CONFIDENCE_DETECTIONS: int = Field(default=1, ge=1)
    REID_HIGH_CONFIDENCE_WINDOW_SECONDS: float = Field(default=10.0, gt=0, description="Window over which high-confidence sightings are counted for confirmation.")

    # --- Per-track match stability ---
    REID_MATCH_STABILITY_FRAMES: int = Field(default=1, ge=1, description="Frames a changed decision must persist before a track switches identity. 1 disables.")
    REID_MATCH_STABILITY_RESET_SECONDS: float = Field(default=2.0, gt=0)

    # --- Lifecycle ---
    IDENTITY_EXPIRATION_MINUTES: float = Field(default=10.0, gt=0)
    IDENTITY_CLEANUP_INTERVAL_SECONDS: float = Field(default=300.0, gt=0)
    START_IDENTITY_CLEANUP: bool = True
    LOAD_IDENTITIES_ON_STARTUP: bool = False
    IDENTITY_LOAD_HOURS: float = Field(default=24.0, ge=0)
    REID_INACTIVE_RETENTION_MINUTES: float = Field(default=60.0, ge=0, description="How long a deactivated identity stays in memory before cleanup drops it.")
    REID_MAX_IDENTITIES_IN_MEMORY: int = Field(default=5000, ge=1)

    @field_validator("REID_SIMILARITY_THRESHOLD")
    @classmethod
    def _check_similarity_threshold(cls, value: float) -> float:
        if not -1.0 <= value <= 1.0:
            raise ValueError("REID_SIMILARITY_THRESHOLD must be a cosine similarity in [-1, 1]")
        return value

    @field_validator("REID_GALLERY_EMA_ALPHA")
    @classmethod
    def _check_ema_alpha(cls, value: float) -> float:
        if not 0.0 <= value < 1.0:
            raise ValueError("REID_GALLERY_EMA_ALPHA must be in [0, 1)")
        return value

    @property
    def identity_expiration(self) -> timedelta:
        return timedelta(minutes=self.IDENTITY_EXPIRATION_MINUTES)

    @property
    def currently_active_window(self) -> timedelta:
        return timedelta(seconds=self.REID_CURRENTLY_ACTIVE_WINDOW_SECONDS)

    @property
    def identity_load_window(self) -> timedelta:
        return timedelta(hours=self.IDENTITY_LOAD_HOURS)

    @property
    def high_confidence_window(self) -> timedelta:
        return timedelta(seconds=self.REID_HIGH_CONFIDENCE_WINDOW_SECONDS)

    @property
    def inactive_retention(self) -> timedelta:
        return timedelta(minutes=self.REID_INACTIVE_RETENTION_MINUTES)

    model_config = {
        "extra": "ignore",
        "env_file": ".env",
        "env_file_encoding": "utf-8"
    }


settings = Settings()
