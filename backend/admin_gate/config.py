import os
import threading
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


class Settings(BaseModel):
    app_name: str = Field(default="Admin Dashboard Gate")
    debug: bool = Field(default=False)
    database_url: str = Field(default="")
    functions_url: str = Field(default="")
    functions_api_key: str | None = Field(default=None)
    token_secret: str | None = Field(default=None)
    token_algorithm: str = Field(default="HS256")
    token_audience: str = Field(default="authenticated")
    redis_url: str | None = Field(default=None)
    role_cache_ttl_seconds: int = Field(default=300)
    rpc_timeout_seconds: float = Field(default=10.0)
    sign_in_path: str = Field(default="/login")
    app_root_path: str = Field(default="/")
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_recycle: int = Field(default=1800)
    db_pool_pre_ping: bool = Field(default=True)

    @classmethod
    def from_env(cls) -> "Settings":
        token_secret = os.getenv("TOKEN_SECRET", "").strip()
        if not token_secret:
            raise ValueError("TOKEN_SECRET environment variable must be set")

        functions_url = os.getenv("FUNCTIONS_URL", "").strip()
        if not functions_url:
            raise ValueError("FUNCTIONS_URL environment variable must be set")
        parsed_functions = urlparse(functions_url)
        if parsed_functions.scheme not in {"http", "https"} or not parsed_functions.netloc:
            raise ValueError("FUNCTIONS_URL must be a valid http/https URL with host")

        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL environment variable must be set")

        parsed_db = urlparse(database_url)
        if parsed_db.scheme != "postgresql+asyncpg":
            raise ValueError("DATABASE_URL must start with 'postgresql+asyncpg://'")
        if not parsed_db.hostname:
            raise ValueError("DATABASE_URL must include hostname")

        role_cache_ttl_seconds = int(
            os.getenv(
                "ROLE_CACHE_TTL_SECONDS", cls.model_fields["role_cache_ttl_seconds"].default
            )
        )
        if role_cache_ttl_seconds <= 0:
            raise ValueError("ROLE_CACHE_TTL_SECONDS must be greater than 0")

        rpc_timeout_seconds = float(
            os.getenv("RPC_TIMEOUT_SECONDS", cls.model_fields["rpc_timeout_seconds"].default)
        )
        if rpc_timeout_seconds <= 0:
            raise ValueError("RPC_TIMEOUT_SECONDS must be greater than 0")

        sign_in_path = os.getenv("SIGN_IN_PATH", cls.model_fields["sign_in_path"].default).strip()
        app_root_path = os.getenv(
            "APP_ROOT_PATH", cls.model_fields["app_root_path"].default
        ).strip()
        for name, path in (("SIGN_IN_PATH", sign_in_path), ("APP_ROOT_PATH", app_root_path)):
            if not path.startswith("/"):
                raise ValueError(f"{name} must be an absolute path starting with '/'")

        db_pool_size = int(os.getenv("DB_POOL_SIZE", cls.model_fields["db_pool_size"].default))
        if db_pool_size <= 0:
            raise ValueError("DB_POOL_SIZE must be greater than 0")

        db_max_overflow = int(
            os.getenv("DB_MAX_OVERFLOW", cls.model_fields["db_max_overflow"].default)
        )
        if db_max_overflow < 0:
            raise ValueError("DB_MAX_OVERFLOW must be greater than or equal to 0")

        db_pool_recycle = int(
            os.getenv("DB_POOL_RECYCLE", cls.model_fields["db_pool_recycle"].default)
        )
        if db_pool_recycle <= 0:
            raise ValueError("DB_POOL_RECYCLE must be greater than 0")

        raw_db_pool_pre_ping = os.getenv(
            "DB_POOL_PRE_PING", str(cls.model_fields["db_pool_pre_ping"].default)
        ).strip().lower()
        if raw_db_pool_pre_ping in {"1", "true", "yes", "on"}:
            db_pool_pre_ping = True
        elif raw_db_pool_pre_ping in {"0", "false", "no", "off"}:
            db_pool_pre_ping = False
        else:
            raise ValueError("DB_POOL_PRE_PING must be a boolean value")

        redis_url = os.getenv("REDIS_URL", "").strip() or None
        functions_api_key = os.getenv("FUNCTIONS_API_KEY", "").strip() or None

        return cls(
            app_name=os.getenv("APP_NAME", cls.model_fields["app_name"].default),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            database_url=database_url,
            functions_url=functions_url.rstrip("/"),
            functions_api_key=functions_api_key,
            token_secret=token_secret,
            token_algorithm=os.getenv(
                "TOKEN_ALGORITHM", cls.model_fields["token_algorithm"].default
            ),
            token_audience=os.getenv(
                "TOKEN_AUDIENCE", cls.model_fields["token_audience"].default
            ),
            redis_url=redis_url,
            role_cache_ttl_seconds=role_cache_ttl_seconds,
            rpc_timeout_seconds=rpc_timeout_seconds,
            sign_in_path=sign_in_path,
            app_root_path=app_root_path,
            db_pool_size=db_pool_size,
            db_max_overflow=db_max_overflow,
            db_pool_recycle=db_pool_recycle,
            db_pool_pre_ping=db_pool_pre_ping,
        )


# Settings are validated on first access, not at import time.
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    Uses double-checked locking so concurrent first accesses build the
    settings only once. threading.Lock works in both sync and async contexts.

    Returns:
        Settings instance

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance


def _reset_settings_for_testing() -> None:
    global _settings_instance
    with _settings_lock:
        _settings_instance = None
