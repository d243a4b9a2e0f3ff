import os
from dataclasses import dataclass
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    data_dir: Path
    asset_dir: Path
    migrations_dir: Path
    file_size_limit: int

    login_cookie_name: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from e


def load_settings() -> Settings:
    data_dir = Path(_getenv("DATA_DIR", "data")).resolve()
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", f"sqlite:///{data_dir / 'initiative-tracker.db'}"),
        data_dir=data_dir,
        asset_dir=Path(_getenv("ASSET_DIR", str(data_dir / "assets"))).resolve(),
        migrations_dir=Path(_getenv("MIGRATIONS_DIR", str(ROOT / "migrations" / "versions"))).resolve(),
        # 10MB per asset
        file_size_limit=_getenv_int("FILE_SIZE_LIMIT", 10 * 1024 * 1024),
        login_cookie_name=_getenv("LOGIN_COOKIE_NAME", "tracker_session"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "DATA_DIR": s.data_dir,
        "ASSET_DIR": s.asset_dir,
        "MIGRATIONS_DIR": s.migrations_dir,
        "FILE_SIZE_LIMIT": s.file_size_limit,
        "LOGIN_COOKIE_NAME": s.login_cookie_name,
        "LOGIN_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # multipart bodies carry at most a pdf and an image
        "MAX_CONTENT_LENGTH": 2 * s.file_size_limit + 1024 * 1024,
    }
