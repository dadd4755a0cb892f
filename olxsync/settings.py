from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "postgresql+psycopg://localhost/olxsync"

    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_bucket: str = "product-images"

    olx_api_base_url: str = "https://api.olx.ba"
    olx_listing_url_base: str = "https://olx.ba/artikal"
    olx_device_name: str = "olxsync"
    olx_token_ttl_days: int = 30  # upstream doesn't return an expiry
    olx_http_timeout: float = 30.0
    olx_http_retry_count: int = 3  # GET only, transport errors only

    olx_title_max_length: int = 65
    olx_short_description_max_length: int = 100
    olx_listings_per_page: int = 50
    olx_default_listing_type: str = "sell"
    olx_default_state: str = "used"
    olx_published_statuses: list[str] = ["active", "published", "live"]
    olx_preferred_image_variant: str = "300x300"

    # Sarajevo; used when neither a template location nor synced GPS exists
    olx_default_latitude: float = 43.8563
    olx_default_longitude: float = 18.4131

    sync_error_cap: int = 50
    sync_log_dir: str = "log"

    scraper_command: list[str] = ["node", "scripts/scraper.js"]
    scraper_username: str = ""
    scraper_password: str = ""
    scraper_timeout_seconds: float = 1800.0
    scraper_stall_seconds: float = 300.0

    @field_validator("database_url")
    @classmethod
    def validate_db_url(cls, v: str) -> str:
        if v and not v.startswith(("postgresql", "sqlite")):
            raise ValueError("Database URL must start with 'postgresql' or 'sqlite'.")
        return v

    @field_validator("olx_api_base_url", "olx_listing_url_base")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with 'http://' or 'https://'.")
        return v.rstrip("/")

    @field_validator("olx_token_ttl_days", "olx_listings_per_page", "olx_title_max_length", "sync_error_cap")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be greater than 0.")
        return v

    @field_validator("scraper_timeout_seconds", "scraper_stall_seconds", "olx_http_timeout")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Timeout must be 0 or greater.")
        return v

    @field_validator("olx_http_retry_count")
    @classmethod
    def validate_retry_count(cls, v: int) -> int:
        if not 1 <= v <= 10:
            raise ValueError("olx_http_retry_count must be between 1 and 10.")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)


settings = Settings()
