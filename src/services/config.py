"""Configuration loading for the dues engine.

Loads settings from .env file and environment variables with sensible defaults.
Validates values and provides clear error messages.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Bank and messaging apps whose notifications may announce a deposit
BANK_PACKAGES: dict[str, str] = {
    "com.kbstar.kbbank": "KB국민",
    "com.shinhan.sbanking": "신한",
    "nh.smart": "NH농협",
    "com.wooribank.smart.banking": "우리",
    "com.ibk.neobanking": "IBK기업",
    "com.hanabank.ebk.channel.android.hananbank": "하나",
    "com.kakaobank.channel": "카카오뱅크",
    "com.kakao.talk": "카카오톡",
}

DEFAULT_PACKAGES: list[str] = list(BANK_PACKAGES)


@dataclass
class AppConfig:
    """Runtime configuration for the dues engine."""

    database_url: str = "sqlite:///./clubdues.db"
    """SQLAlchemy database URL (default: local SQLite)"""

    log_file: str = "logs/server.log"
    """Path to log file (default: logs/server.log)"""

    notification_packages: list[str] = field(default_factory=lambda: list(DEFAULT_PACKAGES))
    """App packages whose notifications are matched against dues"""

    @property
    def async_database_url(self) -> str:
        """Database URL with an async driver."""
        if self.database_url.startswith("sqlite:///"):
            return self.database_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        return self.database_url


def load_config() -> AppConfig:
    """
    Load configuration from .env file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (DATABASE_URL, LOG_FILE, NOTIFICATION_PACKAGES)
    2. .env file in project root
    3. Default values

    Returns:
        AppConfig with all settings

    Raises:
        ValueError: If a configured value is invalid

    Example:
        Create .env file:
        ```
        DATABASE_URL=sqlite:///./clubdues.db
        NOTIFICATION_PACKAGES=com.kakaobank.channel,com.kakao.talk
        ```

        Then call:
        ```
        config = load_config()
        ```
    """
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    database_url = os.getenv("DATABASE_URL", "sqlite:///./clubdues.db").strip()
    log_file = os.getenv("LOG_FILE", "logs/server.log").strip()
    packages_raw = os.getenv("NOTIFICATION_PACKAGES")

    if not database_url:
        raise ValueError(
            "DATABASE_URL is empty. "
            "Unset it to use the default SQLite database or provide a SQLAlchemy URL"
        )
    if "://" not in database_url:
        raise ValueError(f"DATABASE_URL is not a valid SQLAlchemy URL: {database_url}")

    if not log_file:
        raise ValueError("LOG_FILE is empty. Unset it to use logs/server.log")

    if packages_raw is None:
        notification_packages = list(DEFAULT_PACKAGES)
    else:
        notification_packages = [pkg.strip() for pkg in packages_raw.split(",") if pkg.strip()]
        if not notification_packages:
            raise ValueError(
                "NOTIFICATION_PACKAGES is set but lists no packages. "
                "Unset it to accept the known bank apps"
            )

    return AppConfig(
        database_url=database_url,
        log_file=log_file,
        notification_packages=notification_packages,
    )


__all__ = ["AppConfig", "BANK_PACKAGES", "DEFAULT_PACKAGES", "load_config"]
