from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_env: Literal["dev", "prod"] = Field("prod")
    cors_origins_raw: str | None = Field(None, validation_alias="cors_origins")
    redis_url: str | None = Field(None)
    redis_socket_timeout_seconds: float = Field(5.0)
    session_cookie_name: str = Field("session")
    session_ttl_seconds: int = Field(7 * 24 * 60 * 60)
    session_remember_me_ttl_seconds: int = Field(30 * 24 * 60 * 60)
    session_cookie_secure: bool | None = Field(None)
    user_roster_path: str = Field("config/users.json")
    must_change_password_users_raw: str | None = Field(
        None, validation_alias="must_change_password_users"
    )
    password_hash_scheme: Literal["argon2id", "bcrypt"] = Field("argon2id")
    password_hash_argon2_time_cost: int = Field(3)
    password_hash_argon2_memory_cost: int = Field(65536)
    password_hash_argon2_parallelism: int = Field(2)
    password_hash_bcrypt_cost: int = Field(12)
    password_min_length: int = Field(4)
    middle_manager_excluded_branch: str = Field("장한평")
    list_default_page_size: int = Field(20)
    list_max_page_size: int = Field(100)
    filter_timezone: str = Field("UTC")
    storage_backend: Literal["local", "memory"] = Field("local")
    upload_root: str = Field("tmp")
    upload_max_bytes: int = Field(10 * 1024 * 1024)
    upload_allowed_mime_types_raw: str = Field(
        "image/jpeg,image/png,image/webp,image/heic,application/pdf,"
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        validation_alias="upload_allowed_mime_types",
    )
    suggestions_batch_size: int = Field(100)
    suggestions_max_batches: int = Field(10)
    metrics_enabled: bool = Field(True)
    metrics_token: str | None = Field(None)

    model_config = SettingsConfigDict(env_file=".env", enable_decoding=False)

    @field_validator(
        "cors_origins_raw",
        "must_change_password_users_raw",
        "upload_allowed_mime_types_raw",
        mode="before",
    )
    @classmethod
    def normalize_list_raw(cls, value: object) -> str | None:
        if value is None:
            return None
        if isinstance(value, (list, tuple, set)):
            return ",".join(str(item).strip() for item in value if str(item).strip())
        return str(value)

    @field_validator("list_default_page_size", "list_max_page_size")
    @classmethod
    def validate_page_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("page sizes must be positive")
        return value

    @model_validator(mode="after")
    def validate_prod_settings(self) -> "Settings":
        if self.list_default_page_size > self.list_max_page_size:
            raise ValueError("list_default_page_size must not exceed list_max_page_size")
        if self.app_env != "prod":
            return self
        if self.metrics_enabled:
            token = (self.metrics_token or "").strip()
            if not token:
                raise ValueError("METRICS_ENABLED=true in APP_ENV=prod requires METRICS_TOKEN")
        return self

    @staticmethod
    def _split(raw: str | None) -> list[str]:
        if not raw:
            return []
        return [item.strip() for item in raw.split(",") if item.strip()]

    @property
    def cors_origins(self) -> list[str]:
        return self._split(self.cors_origins_raw)

    @property
    def must_change_password_users(self) -> set[str]:
        return set(self._split(self.must_change_password_users_raw))

    @property
    def upload_allowed_mime_types(self) -> set[str]:
        return set(self._split(self.upload_allowed_mime_types_raw))

    @property
    def secure_cookies(self) -> bool:
        if self.session_cookie_secure is not None:
            return self.session_cookie_secure
        return self.app_env == "prod"


settings = Settings()
