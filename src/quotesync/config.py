"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


# Statuses seen on the production simPRO account. Spacing around the colon is
# inconsistent upstream; entries are normalised before comparison.
DEFAULT_ACTIVE_STATUSES: list[str] = [
    "Quote: To Be Assigned",
    "Quote: To Be Scheduled",
    "Quote: To Write",
    "Quote: Visit Scheduled",
    "Quote: In Progress",
    "Quote: Won",
    "Quote: On Hold",
    "Quote: Sent",
    "Quote: Due Date Reached",
    "Quote: Quote Due Date Reached",
    "Quote: Archived - Not Won",
    "Quote: Archived - Won",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Monitoring
    SENTRY_DSN: str = ""

    # simPRO (source system)
    SIMPRO_BASE_URL: str = ""
    SIMPRO_ACCESS_TOKEN: str = ""
    SIMPRO_COMPANY_ID: int = 0
    SIMPRO_WEBHOOK_SECRET: str = ""
    SIMPRO_TIMEOUT: float = 30.0

    # monday.com (board system)
    MONDAY_API_TOKEN: str = ""
    MONDAY_API_VERSION: str = "2024-10"
    MONDAY_TIMEOUT: float = 30.0
    MONDAY_ACCOUNTS_BOARD_ID: str = ""
    MONDAY_CONTACTS_BOARD_ID: str = ""
    MONDAY_DEALS_BOARD_ID: str = ""
    MONDAY_PHONE_COUNTRY: str = "AU"

    # monday.com column ids -- accounts board
    MONDAY_ACCOUNT_SIMPRO_ID_COLUMN: str = "text_mktzqxk"
    MONDAY_ACCOUNT_DESCRIPTION_COLUMN: str = "company_description"
    MONDAY_ACCOUNT_NOTES_COLUMN: str = "text_mktrez5x"

    # monday.com column ids -- contacts board
    MONDAY_CONTACT_SIMPRO_ID_COLUMN: str = "text_mkty91sr"
    MONDAY_CONTACT_EMAIL_COLUMN: str = "contact_email"
    MONDAY_CONTACT_PHONE_COLUMN: str = "contact_phone"
    MONDAY_CONTACT_NOTES_COLUMN: str = "text_mktr67s0"
    MONDAY_CONTACT_ACCOUNT_COLUMN: str = "contact_account"
    MONDAY_CONTACT_DEAL_COLUMN: str = "contact_deal"

    # monday.com column ids -- deals board
    MONDAY_DEAL_SIMPRO_ID_COLUMN: str = "text_mktzc7e6"
    MONDAY_DEAL_VALUE_COLUMN: str = "deal_value"
    MONDAY_DEAL_STAGE_COLUMN: str = "color_mktrw6k3"
    MONDAY_DEAL_CLOSE_DATE_COLUMN: str = "deal_expected_close_date"
    MONDAY_DEAL_NOTES_COLUMN: str = "text_mktrtr9b"
    MONDAY_DEAL_CONTACTS_COLUMN: str = "deal_contact"
    MONDAY_DEAL_ACCOUNT_COLUMN: str = "deal_account"
    MONDAY_DEAL_OWNER_COLUMN: str = "deal_owner"

    # Classification policy
    MINIMUM_QUOTE_VALUE: float = 15000.0
    ACTIVE_QUOTE_STAGES: list[str] = ["Complete", "Approved"]
    ACTIVE_QUOTE_STATUSES: list[str] = DEFAULT_ACTIVE_STATUSES

    # Salesperson name -> monday user id (JSON object in the environment)
    SALESPERSON_USER_IDS: dict[str, int] = {}

    ADOPT_ACCOUNTS_BY_NAME: bool = True

    # Webhook dedup / debounce
    WEBHOOK_DEBOUNCE_SECONDS: float = 30.0
    EXISTENCE_CACHE_SECONDS: float = 300.0
    EXISTENCE_CHECK_ATTEMPTS: int = 3
    EXISTENCE_CHECK_DELAY_SECONDS: float = 2.0

    # Cron trigger
    CRON_SECRET: str = ""
    SYNC_DEADLINE_SECONDS: float = 280.0

    @field_validator("ACTIVE_QUOTE_STAGES", "ACTIVE_QUOTE_STATUSES")
    @classmethod
    def _non_empty_allow_list(cls, value: list[str]) -> list[str]:
        cleaned = [item for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("allow-list must contain at least one non-blank entry")
        return cleaned

    @field_validator("MINIMUM_QUOTE_VALUE")
    @classmethod
    def _non_negative_minimum(cls, value: float) -> float:
        if value < 0:
            raise ValueError("MINIMUM_QUOTE_VALUE must be >= 0")
        return value

    @field_validator("EXISTENCE_CHECK_ATTEMPTS")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        if value < 1:
            raise ValueError("EXISTENCE_CHECK_ATTEMPTS must be >= 1")
        return value

    def missing_sync_settings(self) -> list[str]:
        """Return the names of settings required for syncing that are unset."""
        required = {
            "SIMPRO_BASE_URL": self.SIMPRO_BASE_URL,
            "SIMPRO_ACCESS_TOKEN": self.SIMPRO_ACCESS_TOKEN,
            "SIMPRO_COMPANY_ID": self.SIMPRO_COMPANY_ID,
            "MONDAY_API_TOKEN": self.MONDAY_API_TOKEN,
            "MONDAY_ACCOUNTS_BOARD_ID": self.MONDAY_ACCOUNTS_BOARD_ID,
            "MONDAY_CONTACTS_BOARD_ID": self.MONDAY_CONTACTS_BOARD_ID,
            "MONDAY_DEALS_BOARD_ID": self.MONDAY_DEALS_BOARD_ID,
        }
        return [name for name, value in required.items() if not value]


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
