"""
Environment-driven configuration.

Everything is read once at app creation (after python-dotenv has loaded `.env`) and
flattened into upper-case Flask config keys.
"""
import os
from dataclasses import dataclass

MAX_UPLOAD_BYTES = 50 * 1024 * 1024


def _env(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _env_flag(name: str, default: bool) -> bool:
    raw = _env(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _env_csv(name: str) -> tuple[str, ...]:
    return tuple(p.strip().lower() for p in _env(name).split(",") if p.strip())


@dataclass(frozen=True)
class StorageSettings:
    backend: str
    root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    @classmethod
    def from_env(cls) -> "StorageSettings":
        return cls(
            backend=_env("STORAGE_BACKEND", "local").lower(),
            root=_env("STORAGE_ROOT"),
            s3_endpoint=_env("S3_ENDPOINT"),
            s3_region=_env("S3_REGION", "sa-east-1"),
            s3_bucket=_env("S3_BUCKET"),
            s3_access_key_id=_env("S3_ACCESS_KEY_ID"),
            s3_secret_access_key=_env("S3_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    storage: StorageSettings
    csrf_enabled: bool
    default_user_password: str
    # Extra people allowed to adjust XP besides managers.
    xp_adjust_emails: tuple[str, ...]
    xp_adjust_matriculas: tuple[str, ...]

    @property
    def is_production(self) -> bool:
        return self.env.lower() in ("prod", "production")

    def as_flask_config(self) -> dict:
        st = self.storage
        return {
            "SECRET_KEY": self.secret_key,
            "ENV": self.env,
            "DATABASE_URL": self.database_url,
            "STORAGE_BACKEND": st.backend,
            "STORAGE_ROOT": st.root,
            "S3_ENDPOINT": st.s3_endpoint,
            "S3_REGION": st.s3_region,
            "S3_BUCKET": st.s3_bucket,
            "S3_ACCESS_KEY_ID": st.s3_access_key_id,
            "S3_SECRET_ACCESS_KEY": st.s3_secret_access_key,
            "CSRF_ENABLED": self.csrf_enabled,
            "DEFAULT_USER_PASSWORD": self.default_user_password,
            "XP_ADJUST_ALLOWED_EMAILS": self.xp_adjust_emails,
            "XP_ADJUST_ALLOWED_MATRICULAS": self.xp_adjust_matriculas,
            "SESSION_COOKIE_HTTPONLY": True,
            "SESSION_COOKIE_SAMESITE": "Lax",
            "SESSION_COOKIE_SECURE": self.is_production,
            "MAX_CONTENT_LENGTH": MAX_UPLOAD_BYTES,
        }


def load_settings() -> Settings:
    return Settings(
        secret_key=_env("SECRET_KEY", "change-me"),
        env=_env("ENV", "development"),
        database_url=_env("DATABASE_URL", "sqlite:///djtquest.db"),
        storage=StorageSettings.from_env(),
        csrf_enabled=_env_flag("CSRF_ENABLED", True),
        default_user_password=_env("DEFAULT_USER_PASSWORD", "123456"),
        xp_adjust_emails=_env_csv("XP_ADJUST_ALLOWED_EMAILS"),
        xp_adjust_matriculas=_env_csv("XP_ADJUST_ALLOWED_MATRICULAS"),
    )


def load_config() -> dict:
    return load_settings().as_flask_config()
