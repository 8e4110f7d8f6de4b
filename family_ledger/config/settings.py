"""
Configuration Management for Family Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every external collaborator (Google Drive, Google Sheets, SMTP) has its own
settings group with its own env prefix, validated when first accessed.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


AMBIGUOUS_CODE_CHARACTERS = frozenset("0O1I")


class FamilySettings(BaseSettings):
    """Family sharing and invite code configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FAMILY_",
        extra="ignore"
    )

    invite_code_length: int = Field(
        default=10,
        ge=6,
        le=32,
        description="Number of characters in an invite code"
    )
    invite_code_alphabet: str = Field(
        default="ABCDEFGHJKLMNPQRSTUVWXYZ23456789",
        description="Symbols used to build invite codes"
    )
    invite_expiry_days: int = Field(
        default=7,
        ge=1,
        le=90,
        description="Days before a code invite stops being redeemable"
    )

    @field_validator('invite_code_alphabet')
    @classmethod
    def validate_alphabet(cls, v: str) -> str:
        """Alphabet must be 32 distinct, unambiguous, upper-case symbols."""
        v = v.strip().upper()
        if len(set(v)) != len(v):
            raise ValueError("Invite code alphabet contains repeated symbols")
        if len(v) != 32:
            raise ValueError(f"Invite code alphabet must have 32 symbols, got {len(v)}")
        ambiguous = AMBIGUOUS_CODE_CHARACTERS.intersection(v)
        if ambiguous:
            raise ValueError(
                f"Invite code alphabet contains ambiguous symbols: {''.join(sorted(ambiguous))}"
            )
        return v


class DriveSettings(BaseSettings):
    """Google Drive attachment storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DRIVE_",
        extra="ignore"
    )

    folder_name: str = Field(
        default="Family Ledger Attachments",
        min_length=1,
        description="Private folder created in each user's Drive"
    )
    api_base_url: str = Field(
        default="https://www.googleapis.com/drive/v3",
        description="Drive metadata API endpoint"
    )
    upload_base_url: str = Field(
        default="https://www.googleapis.com/upload/drive/v3",
        description="Drive media upload endpoint"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for a single Drive call"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the spreadsheet that holds all collections"
    )
    rows_per_sheet: int = Field(
        default=1000,
        ge=10,
        description="Initial row capacity of a newly created collection sheet"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class SmtpSettings(BaseSettings):
    """Outbound email for family invites. Leave SMTP_HOST unset to disable."""

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore"
    )

    host: Optional[str] = Field(
        default=None,
        description="SMTP server host; invites are not emailed when unset"
    )
    port: int = Field(default=587, ge=1, le=65535)
    username: Optional[str] = None
    password: Optional[str] = None
    sender: str = Field(
        default="no-reply@family-ledger.local",
        description="From address of invite emails"
    )
    use_tls: bool = Field(default=True)
    app_url: str = Field(
        default="http://localhost:8501",
        description="Link included in invite emails"
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.host)


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for local logs"
    )
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|sheets)$",
        description="Document store backend"
    )
    max_attachment_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum attachment size in MB"
    )

    @property
    def max_attachment_size_bytes(self) -> int:
        """Get max attachment size in bytes."""
        return self.max_attachment_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily so a missing Sheets config does not
    # prevent running on the in-memory store.

    @property
    def family(self) -> FamilySettings:
        return FamilySettings()

    @property
    def drive(self) -> DriveSettings:
        return DriveSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def smtp(self) -> SmtpSettings:
        return SmtpSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus {setting_name}_error
    entries for the groups that failed. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("family", "drive", "google_sheets", "smtp", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
