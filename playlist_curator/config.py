from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    jellyfin_url: str = Field(default="http://jellyfin:8096", alias="JELLYFIN_URL")
    jellyfin_api_key: str = Field(default="", alias="JELLYFIN_API_KEY")
    jellyfin_user_id: str = Field(default="", alias="JELLYFIN_USER_ID")
    page_size: int = Field(default=200, alias="PAGE_SIZE")
    prefer_large_pages: bool = Field(default=True, alias="PREFER_LARGE_PAGES")
    move_throttle_ms: int = Field(default=30, alias="MOVE_THROTTLE_MS")
    batch_size: int = Field(default=100, alias="BATCH_SIZE")
    auto_load_all: bool = Field(default=True, alias="AUTO_LOAD_ALL")
    request_timeout: float = Field(default=30.0, alias="REQUEST_TIMEOUT")
    app_port: int = Field(default=8080, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )


settings = Settings()
