"""Application configuration using pydantic-settings."""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Bot and store configuration from environment variables."""

    # Bot (identity provider credentials)
    bot_token: str | None = Field(default=None, alias="BOT_TOKEN")

    # Namespace for every collection path
    app_id: str | None = Field(default=None, alias="APP_ID")

    # Database: DATABASE_URL wins over the individual parts
    database_url_override: str | None = Field(default=None, alias="DATABASE_URL")
    db_host: str = Field(default="db", alias="DB_HOST")
    db_port: int = Field(default=5432, alias="DB_PORT")
    db_name: str = Field(default="lab_booking", alias="DB_NAME")
    db_user: str = Field(default="postgres", alias="DB_USER")
    db_password: str | None = Field(default=None, alias="DB_PASSWORD")

    # Comma separated Telegram ids carrying the admin claim
    admin_ids_raw: str = Field(default="", alias="ADMIN_IDS")

    # Timezone used to read and display booking times
    timezone: str = Field(default="UTC", alias="TIMEZONE")

    # Booking form
    workday_start_hour: int = Field(default=8, alias="WORKDAY_START_HOUR")
    workday_end_hour: int = Field(default=17, alias="WORKDAY_END_HOUR")
    slot_minutes: int = Field(default=30, alias="SLOT_MINUTES")
    max_future_booking_days: int = Field(default=30, alias="MAX_FUTURE_BOOKING_DAYS")

    # Background jobs
    reconcile_interval_minutes: int = Field(default=15, alias="RECONCILE_INTERVAL_MINUTES")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="logs", alias="LOG_DIR")

    @property
    def database_url(self) -> str:
        """Build async PostgreSQL connection string."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def admin_ids(self) -> set[int]:
        ids = set()
        for part in self.admin_ids_raw.split(","):
            part = part.strip()
            if part.isdigit():
                ids.add(int(part))
        return ids

    def missing_settings(self) -> list[str]:
        """Names of required parameters that are not set."""
        missing = []
        if not self.bot_token:
            missing.append("BOT_TOKEN")
        if not self.app_id:
            missing.append("APP_ID")
        if not self.database_url_override and not self.db_password:
            missing.append("DATABASE_URL or DB_PASSWORD")
        return missing

    @property
    def is_configured(self) -> bool:
        return not self.missing_settings()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


# Singleton instance
settings = Settings()
