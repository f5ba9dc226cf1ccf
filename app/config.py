"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_TV_MARKERS: tuple[str, ...] = ("电视剧",)

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 12_0 like Mac OS X) AppleWebKit/604.1.38 "
    "(KHTML, like Gecko) Version/12.0 Mobile/15A372 Safari/604.1"
)
DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="ShelfMirror", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3001, alias="PORT")

    douban_api_url: HttpUrl = Field(
        default="https://fatesinger.com/dbapi", alias="DOUBAN_API_URL"
    )
    douban_referer: str = Field(
        default="https://m.douban.com", alias="DOUBAN_REFERER"
    )
    upstream_user_agent: str = Field(
        default=MOBILE_USER_AGENT, alias="UPSTREAM_USER_AGENT"
    )

    image_user_agent: str = Field(
        default=DESKTOP_USER_AGENT, alias="IMAGE_USER_AGENT"
    )
    image_referer: str = Field(default="https://douban.com", alias="IMAGE_REFERER")
    image_timeout_seconds: float = Field(
        default=15.0, alias="IMAGE_TIMEOUT", gt=0, le=300
    )

    page_size: int = Field(default=50, alias="PAGE_SIZE", ge=1, le=100)
    batch_concurrency: int = Field(
        default=5, alias="BATCH_CONCURRENCY", ge=1, le=50
    )
    validate_pause_every: int = Field(
        default=5, alias="VALIDATE_PAUSE_EVERY", ge=0
    )
    validate_pause_seconds: float = Field(
        default=1.0, alias="VALIDATE_PAUSE_SECONDS", ge=0
    )

    tv_markers: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_TV_MARKERS, alias="TV_MARKERS"
    )

    data_dir: Path = Field(default=Path("./data"), alias="DATA_DIR")
    image_cache_dir: Path | None = Field(default=None, alias="IMAGE_CACHE_DIR")
    image_url_prefix: str = Field(default="/cache/images", alias="IMAGE_URL_PREFIX")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/shelfmirror.db", alias="DATABASE_URL"
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tv_markers", mode="before")
    @classmethod
    def _parse_tv_markers(cls, value: object) -> tuple[str, ...]:
        """Normalise TV marker selections from environment values."""

        if value is None:
            return DEFAULT_TV_MARKERS
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("TV_MARKERS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            if entry and entry not in cleaned:
                cleaned.append(entry)
        if not cleaned:
            return DEFAULT_TV_MARKERS
        return tuple(cleaned)

    @field_validator("image_url_prefix")
    @classmethod
    def _normalise_prefix(cls, value: str) -> str:
        prefix = "/" + value.strip().strip("/")
        if prefix == "/":
            raise ValueError("IMAGE_URL_PREFIX must name a path below the root")
        return prefix

    @property
    def resolved_image_cache_dir(self) -> Path:
        """Return the directory holding cached image blobs."""

        if self.image_cache_dir is not None:
            return self.image_cache_dir
        return self.data_dir / "images"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
