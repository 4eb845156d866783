"""
core/config.py -- Centralized server configuration via pydantic-settings.

All environment variable reads for the linkshelf server happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
or accept a Settings instance instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The app
      lifespan reads it once and hands the instance to every component it
      builds, so components themselves never reach for the singleton.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. admin_secret -> ADMIN_SECRET).

  @model_validator(mode="after"): Cross-field startup rules.

Security notes:
  [C1] ADMIN_SECRET missing in production (DEBUG not set or false) is a hard
       startup failure. In DEBUG mode the server starts, logs loudly, and the
       authorizer rejects every mutation with server-misconfigured. It never
       fails open.

  [M6] SECRET_KEY signs session tokens. Shorter than 32 chars is rejected;
       missing in production refuses to start; DEBUG auto-generates one.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, catalog/, or client/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from limits import parse as parse_limit
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("linkshelf.config")

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CATALOG_PATH = PROJECT_ROOT / "data" / "catalog.json"


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings(BaseSettings):
    """Server settings loaded from environment variables and .env file.

    All fields have defaults so Settings(debug=True) can be instantiated in
    test environments without a real .env file.

    List-valued options (ALLOWED_ORIGINS, ALLOWED_HOSTS, IP_ALLOWLIST) are
    plain comma-separated strings in the environment; use the *_list
    properties to read them.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Shared admin secret. Empty string is the sentinel for "not configured".
    admin_secret: str = ""
    # Session token signing key. The validator fills this in DEBUG mode.
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Catalog storage
    # ------------------------------------------------------------------

    catalog_file_path: str = ""

    # ------------------------------------------------------------------
    # Network trust boundary
    # ------------------------------------------------------------------

    allowed_origins: str = ""
    allowed_hosts: str = "*"
    ip_allowlist: str = ""
    # Only honour X-Forwarded-For / X-Forwarded-Proto behind a proxy you run.
    trust_forwarded_for: bool = False
    force_https: bool = False

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    session_expire_seconds: int = 3600
    max_token_length: int = 1000
    auth_failure_delay_min_ms: int = 100
    auth_failure_delay_max_ms: int = 200

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    read_rate_limit: str = "30/minute"
    write_rate_limit: str = "5/minute"
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Payload limits
    # ------------------------------------------------------------------

    max_body_bytes: int = 10 * 1024 * 1024
    enforce_category_integrity: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("read_rate_limit", "write_rate_limit", "login_rate_limit")
    @classmethod
    def validate_rate_limit(cls, value: str) -> str:
        """Reject rate-limit strings the limits parser cannot read ("5/minute")."""
        try:
            parse_limit(value)
        except ValueError as exc:
            raise ValueError(f"Invalid rate limit string: {value!r}") from exc
        return value

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce ADMIN_SECRET [C1] and SECRET_KEY [M6] policy.

        Dev mode (DEBUG=true): auto-generate SECRET_KEY with a warning; a
            missing ADMIN_SECRET is logged as an error but does not stop the
            process. Mutations are rejected by the authorizer.

        Production mode: refuse to start if either secret is missing.
        """
        self.admin_secret = self.admin_secret.strip()
        if not self.admin_secret:
            if self.debug:
                logger.error(
                    "ADMIN_SECRET is not set. All catalog writes will be rejected "
                    "with server-misconfigured until it is configured."
                )
            else:
                raise ValueError(
                    "ADMIN_SECRET is required in production mode. "
                    "Set ADMIN_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Session tokens will not survive restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.auth_failure_delay_min_ms > self.auth_failure_delay_max_ms:
            raise ValueError("AUTH_FAILURE_DELAY_MIN_MS must not exceed AUTH_FAILURE_DELAY_MAX_MS.")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def secret_configured(self) -> bool:
        return bool(self.admin_secret)

    @property
    def allowed_origin_list(self) -> list[str]:
        return _split_csv(self.allowed_origins)

    @property
    def allowed_host_list(self) -> list[str]:
        return _split_csv(self.allowed_hosts) or ["*"]

    @property
    def ip_allowlist_entries(self) -> list[str]:
        return _split_csv(self.ip_allowlist)

    @property
    def catalog_path(self) -> Path:
        """Canonical catalog location (CATALOG_FILE_PATH override or data/catalog.json)."""
        if self.catalog_file_path:
            return Path(self.catalog_file_path).expanduser()
        return DEFAULT_CATALOG_PATH

    @property
    def catalog_fallback_paths(self) -> list[Path]:
        """Read-only alternates for differing deployment layouts, in priority order."""
        cwd = Path.cwd()
        candidates = [
            DEFAULT_CATALOG_PATH,
            PROJECT_ROOT / "public" / "catalog.json",
            cwd / "data" / "catalog.json",
            cwd / "public" / "catalog.json",
        ]
        seen = {self.catalog_path}
        result: list[Path] = []
        for path in candidates:
            if path not in seen:
                seen.add(path)
                result.append(path)
        return result


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: construct Settings(...) directly and wire it into app.state, or
    call get_settings.cache_clear() after changing environment variables.
    """
    return Settings()
