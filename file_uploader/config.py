from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_MIME = ("image/png", "image/jpeg", "application/pdf", "text/plain")


class Settings(BaseSettings):
    app_name: str = "file-uploader"
    host: str = "0.0.0.0"
    port: int = 3000
    mongodb_uri: str = "mongodb://127.0.0.1:27017"
    db_name: str = "file_uploader"
    bucket_name: str = "uploads"
    max_file_size: int = 10 * 1024 * 1024
    allowed_mime: str = ""
    list_default_limit: int = 20
    list_max_limit: int = 100
    local_store_path: str = "file_uploader_local.db"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", frozen=True)

    @property
    def allowed_mime_types(self) -> frozenset[str]:
        configured = [item.strip() for item in self.allowed_mime.split(",") if item.strip()]
        return frozenset(configured or DEFAULT_ALLOWED_MIME)


@lru_cache
def get_settings() -> Settings:
    return Settings()
