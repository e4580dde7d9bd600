from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    app_name: str = Field(default="Tour Admin API")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Remote backend (cloud functions)
    backend_base_url: str = Field(
        default="https://us-central1-aurora-viking-staff.cloudfunctions.net",
        alias="BACKEND_BASE_URL",
    )
    backend_token: str | None = Field(default=None, alias="BACKEND_TOKEN")
    backend_timeout_seconds: float = Field(
        default=30.0, alias="BACKEND_TIMEOUT_SECONDS"
    )

    # Calendar
    # Iceland is UTC+0 year-round; every day key is taken in this zone
    reference_tz: str = Field(
        default="Atlantic/Reykjavik", alias="REFERENCE_TZ"
    )
    max_passengers_per_bus: int = Field(
        default=19, alias="MAX_PASSENGERS_PER_BUS"
    )
    hide_cancelled_bookings: bool = Field(
        default=True, alias="HIDE_CANCELLED_BOOKINGS"
    )
    shift_marker_priority: list[str] = Field(
        default=["applied", "accepted", "completed", "cancelled"],
        alias="SHIFT_MARKER_PRIORITY",
    )
    shift_marker_max_dots: int = Field(default=3, alias="SHIFT_MARKER_MAX_DOTS")
    guide_application_marker_priority: list[str] = Field(
        default=["pending", "approved", "rejected"],
        alias="GUIDE_APPLICATION_MARKER_PRIORITY",
    )
    guide_application_marker_max_dots: int = Field(
        default=3, alias="GUIDE_APPLICATION_MARKER_MAX_DOTS"
    )
    tour_status_history_limit: int = Field(
        default=14, alias="TOUR_STATUS_HISTORY_LIMIT"
    )


settings = Settings()
