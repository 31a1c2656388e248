from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List
from urllib.parse import urlparse


def _as_bool(value: str | None, default: bool) -> bool:
    """Interpret common truthy / falsy strings while providing a default."""

    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, default: int, *, minimum: int = 0) -> int:
    try:
        return max(int(value), minimum) if value is not None else default
    except (TypeError, ValueError):
        return default


def _as_float(value: str | None, default: float) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _as_set(csv: str | None, fallback: set[str]) -> set[str]:
    """Split a CSV string into a set with trimming and fallback."""
    if not csv:
        return set(fallback)
    items = {x.strip() for x in csv.split(",") if x.strip()}
    return items or set(fallback)


def _parse_allowed_origins(raw: str | None) -> List[str]:
    """Normalise comma-separated origins into values accepted by CORSMiddleware."""

    if not raw:
        return ["*"]

    cleaned: List[str] = []
    for origin in raw.split(","):
        value = origin.strip()
        if not value:
            continue
        if value == "*":
            return ["*"]

        parsed = urlparse(value)
        if parsed.scheme and parsed.netloc:
            normalised = f"{parsed.scheme}://{parsed.netloc}"
        else:
            normalised = value.rstrip("/")

        if normalised not in cleaned:
            cleaned.append(normalised)

    return cleaned or ["*"]


def _normalise_database_url(url: str) -> str:
    """Point bare postgres URLs at the asyncpg driver."""

    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


DEV_JWT_SECRET = "poster-studio-dev-secret"


@dataclass
class AuthConfig:
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expiry_minutes: int = 60 * 12
    admin_username: str | None = "admin"
    admin_password: str | None = None

    @property
    def seeds_admin(self) -> bool:
        return bool(self.admin_username and self.admin_password)

    @property
    def uses_dev_secret(self) -> bool:
        return self.jwt_secret == DEV_JWT_SECRET


@dataclass
class ImageAPIConfig:
    base: str = ""
    api_key: str = ""
    kind: str = "auto"
    proxy: str | None = None
    model: str = "gpt-image-1"
    default_size: str = "1024x1024"
    timeout: float = 90.0

    @property
    def is_configured(self) -> bool:
        return bool(self.base)


@dataclass
class GenerationConfig:
    min_theme_length: int = 5
    workers: int = 1
    queue_size: int = 100


@dataclass
class UploadConfig:
    asset_dir: str
    media_url_prefix: str = "/media"
    max_bytes: int = 20_000_000
    allowed_mime: set[str] | None = None


@dataclass(frozen=True)
class R2Config:
    endpoint: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    bucket: str | None = None
    region: str = "auto"
    public_base: str | None = None
    signed_get_ttl: int = 900

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.access_key_id and self.secret_access_key and self.bucket)


@dataclass
class GuardConfig:
    max_body_bytes: int
    disallow_base64: bool

    @classmethod
    def from_env(cls) -> "GuardConfig":
        raw_max = os.getenv("MAX_JSON_BYTES", "2097152")
        try:
            max_bytes = max(int(raw_max), 0)
        except (TypeError, ValueError):
            max_bytes = 2 * 1024 * 1024

        disallow = _as_bool(os.getenv("DISALLOW_BASE64_IN_JSON"), True)
        return cls(max_body_bytes=max_bytes, disallow_base64=disallow)


@dataclass
class Settings:
    environment: str
    log_level: str
    allowed_origins: List[str]
    api_prefix: str
    database_url: str
    auth: AuthConfig
    image_api: ImageAPIConfig
    generation: GenerationConfig
    uploads: UploadConfig
    guard: GuardConfig
    r2: R2Config = field(default_factory=R2Config)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def check_startup(self) -> None:
        """Refuse to serve production traffic with a publicly known token secret."""

        if self.is_production and self.auth.uses_dev_secret:
            raise RuntimeError("JWT_SECRET must be set when ENVIRONMENT=production")


def _first_env(*names: str) -> str | None:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


@lru_cache()
def get_settings() -> Settings:
    def _get(name: str, default: str | None = None) -> str | None:
        v = os.getenv(name)
        return v if v is not None else default

    environment = _get("ENVIRONMENT", "development") or "development"
    prefix = (_get("API_PREFIX", "/api") or "").strip().rstrip("/")
    if prefix and not prefix.startswith("/"):
        prefix = f"/{prefix}"

    auth = AuthConfig(
        jwt_secret=_get("JWT_SECRET") or DEV_JWT_SECRET,
        jwt_algorithm=_get("JWT_ALGORITHM", "HS256") or "HS256",
        jwt_expiry_minutes=_as_int(_get("JWT_EXPIRY_MINUTES"), 60 * 12, minimum=1),
        admin_username=_get("ADMIN_USERNAME", "admin"),
        admin_password=_get("ADMIN_PASSWORD"),
    )

    image_api = ImageAPIConfig(
        base=(_get("IMAGE_API_BASE", "") or "").rstrip("/"),
        api_key=_get("IMAGE_API_KEY") or _get("OPENAI_API_KEY") or "",
        kind=(_get("IMAGE_API_KIND", "auto") or "auto").lower(),
        proxy=_get("IMAGE_API_PROXY") or None,
        model=_get("IMAGE_MODEL", "gpt-image-1") or "gpt-image-1",
        default_size=_get("IMAGE_DEFAULT_SIZE", "1024x1024") or "1024x1024",
        timeout=_as_float(_get("IMAGE_API_TIMEOUT"), 90.0),
    )

    generation = GenerationConfig(
        min_theme_length=_as_int(_get("MIN_THEME_LENGTH"), 5, minimum=1),
        workers=_as_int(_get("GENERATION_WORKERS"), 1, minimum=1),
        queue_size=_as_int(_get("GENERATION_QUEUE_SIZE"), 100),
    )

    uploads = UploadConfig(
        asset_dir=_get("ASSET_DIR", "./data/assets") or "./data/assets",
        media_url_prefix="/" + (_get("MEDIA_URL_PREFIX", "/media") or "/media").strip("/"),
        max_bytes=_as_int(_get("UPLOAD_MAX_BYTES"), 20_000_000),
        allowed_mime=_as_set(
            _get("UPLOAD_ALLOWED_MIME"), {"image/png", "image/jpeg", "image/webp"}
        ),
    )

    r2 = R2Config(
        endpoint=_first_env("R2_ENDPOINT", "S3_ENDPOINT"),
        access_key_id=_first_env("R2_ACCESS_KEY_ID", "S3_ACCESS_KEY"),
        secret_access_key=_first_env("R2_SECRET_ACCESS_KEY", "S3_SECRET_KEY"),
        bucket=_first_env("R2_BUCKET", "S3_BUCKET"),
        region=_first_env("R2_REGION", "S3_REGION") or "auto",
        public_base=(_first_env("R2_PUBLIC_BASE", "S3_PUBLIC_BASE") or "").rstrip("/") or None,
        signed_get_ttl=_as_int(_first_env("R2_SIGNED_GET_TTL", "S3_SIGNED_GET_TTL"), 900, minimum=60),
    )

    return Settings(
        environment=environment,
        log_level=(_get("LOG_LEVEL", "INFO") or "INFO").upper(),
        allowed_origins=_parse_allowed_origins(_get("ALLOWED_ORIGINS", "*")),
        api_prefix=prefix,
        database_url=_normalise_database_url(
            _get("DATABASE_URL", "sqlite+aiosqlite:///./poster_studio.db")
            or "sqlite+aiosqlite:///./poster_studio.db"
        ),
        auth=auth,
        image_api=image_api,
        generation=generation,
        uploads=uploads,
        guard=GuardConfig.from_env(),
        r2=r2,
    )
