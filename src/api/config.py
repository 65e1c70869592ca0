"""HTTP adapter configuration from environment variables."""

import logging
from typing import Optional

from pydantic import ConfigDict
from pydantic_settings import BaseSettings

from src.services.messaging import BankAccount

logger = logging.getLogger(__name__)


class ApiSettings(BaseSettings):
    """API settings loaded from environment variables.

    Pydantic loads values from OS environment variables and the .env file
    at instantiation time, so instantiate through get_api_settings().
    """

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Allow extra fields in .env file
    )

    api_title: str = "Club Dues API"
    api_version: str = "0.1.0"
    cors_origins: str = "*"

    # Account members copy before a transfer (optional)
    bank_name: str = ""
    bank_account_number: str = ""
    bank_account_holder: str = ""

    @property
    def cors_origin_list(self) -> list[str]:
        """Comma-separated CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def bank_account(self) -> Optional[BankAccount]:
        """Configured club account, or None if no account number is set."""
        if not self.bank_account_number:
            return None
        return BankAccount(
            bank_name=self.bank_name,
            account_number=self.bank_account_number,
            account_holder=self.bank_account_holder,
        )


# Lazy loader to ensure environment is loaded before instantiation
_api_settings_instance: Optional[ApiSettings] = None


def get_api_settings() -> ApiSettings:
    """Get or create API settings instance."""
    global _api_settings_instance
    if _api_settings_instance is None:
        _api_settings_instance = ApiSettings()
        logger.debug("Loaded API settings: title=%s", _api_settings_instance.api_title)
    return _api_settings_instance


__all__ = ["ApiSettings", "get_api_settings"]
