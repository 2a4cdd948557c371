from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, DotEnvSettingsSource, EnvSettingsSource, SettingsConfigDict


_LIST_FIELDS = {
    "allow_origins",
    "timesheet_batch_recipients",
    "admin_notification_emails",
}


class _CommaListMixin:
    """Accept `a,b,c` for list settings as well as JSON arrays."""

    def decode_complex_value(self, field_name, field, value):  # type: ignore[override]
        if field_name in _LIST_FIELDS and isinstance(value, str) and not value.lstrip().startswith("["):
            return value
        return super().decode_complex_value(field_name, field, value)  # type: ignore[misc]


class _CommaListEnvSource(_CommaListMixin, EnvSettingsSource):
    pass


class _CommaListDotEnvSource(_CommaListMixin, DotEnvSettingsSource):
    pass


_DEFAULT_JWT_SECRETS = {"change_me", "changeme", "secret", ""}


def _split_csv(value: str | List[str] | None) -> List[str]:
    if isinstance(value, list):
        return [item.strip() for item in value if item and item.strip()]
    if isinstance(value, str) and value.strip():
        return [item.strip() for item in value.split(",") if item.strip()]
    return []


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_name: str = "ABA Ops API"
    project_version: str = "1.0.0"
    environment: str = Field(
        default="development",
        description="Deployment environment name",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )
    allow_destructive_actions: bool = Field(
        default=False,
        description="Allow hard deletes in production.",
        validation_alias=AliasChoices("ALLOW_DESTRUCTIVE_ACTIONS", "DESTRUCTIVE_ACTIONS_ALLOWED"),
    )
    git_sha: str | None = Field(default=None, description="Git SHA for /version")
    log_level: str = Field(default="INFO", description="Logging level")

    # Database
    database_url: str = Field(
        default="postgresql+psycopg://postgres@localhost:5432/abaops",
        description="SQLAlchemy database URL",
    )

    # Auth / JWT
    jwt_secret: str = Field(default="change_me", description="JWT signing secret")
    algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=480, description="Access token expiry in minutes")
    login_dedupe_seconds: int = Field(default=10, description="Collapse repeated LOGIN activity within N seconds")

    # CORS
    allow_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )

    # Storage
    uploads_dir: str = Field(
        default="./uploads",
        description="Directory for generated PDFs and imports",
        validation_alias=AliasChoices("UPLOAD_DIR", "UPLOADS_DIR"),
    )

    # Billing
    billing_timezone: str = Field(
        default="America/New_York",
        description="Timezone used for billing periods and the weekly invoice job",
        validation_alias=AliasChoices("BILLING_TIMEZONE", "TZ_BILLING"),
    )
    invoice_token_days: int = Field(default=30, description="Days a public invoice link stays valid")
    company_name: str = Field(default="ABA Ops", description="Name printed on PDFs and emails")

    # Email delivery
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL for links in emails",
        validation_alias=AliasChoices("APP_BASE_URL", "NEXTAUTH_URL", "FRONTEND_BASE_URL"),
    )
    email_provider: str = Field(
        default="disabled",
        description="Email provider: resend, postmark, smtp, disabled",
        validation_alias=AliasChoices("EMAIL_PROVIDER"),
    )
    email_api_key: str | None = Field(
        default=None,
        description="API key for Resend/Postmark",
        validation_alias=AliasChoices("EMAIL_API_KEY"),
    )
    email_from: str | None = Field(
        default=None,
        description="From address for outbound email",
        validation_alias=AliasChoices("EMAIL_FROM"),
    )
    email_max_attempts: int = Field(default=5, description="Attempts after which a queue item stops being resent")
    timesheet_batch_recipients: List[str] = Field(
        default_factory=list,
        description="Recipients of the approved-timesheet batch email",
        validation_alias=AliasChoices("TIMESHEET_BATCH_RECIPIENTS", "EMAIL_APPROVAL_RECIPIENTS"),
    )
    community_fallback_email: str | None = Field(
        default=None,
        description="Recipient for community invoices whose client has no email",
        validation_alias=AliasChoices("COMMUNITY_FALLBACK_EMAIL", "COMMUNITY_EMAIL_RECIPIENT"),
    )
    admin_notification_emails: List[str] = Field(
        default_factory=list,
        description="Extra recipients for admin notification emails",
        validation_alias=AliasChoices("ADMIN_NOTIFICATION_EMAILS"),
    )

    smtp_host: str | None = Field(default=None, description="SMTP host")
    smtp_port: int = Field(default=587, description="SMTP port")
    smtp_username: str | None = Field(default=None, description="SMTP username")
    smtp_password: str | None = Field(default=None, description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Use TLS for SMTP")

    # DB pool tuning (Postgres)
    db_pool_size: int = Field(default=5, description="Base DB connection pool size")
    db_max_overflow: int = Field(default=10, description="Additional DB connections beyond pool size")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a DB connection")
    db_pool_recycle: int = Field(default=1800, description="Recycle DB connections after N seconds")

    @field_validator("allow_origins", mode="before")
    @classmethod
    def parse_allow_origins(cls, value: str | List[str]) -> List[str]:
        origins = _split_csv(value)
        if origins:
            return origins
        return [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

    @field_validator("timesheet_batch_recipients", "admin_notification_emails", mode="before")
    @classmethod
    def parse_recipient_list(cls, value: str | List[str] | None) -> List[str]:
        return [email.lower() for email in _split_csv(value)]

    @model_validator(mode="after")
    def check_production_guard_rails(self) -> "Settings":
        if not self.is_production:
            return self
        if self.jwt_secret in _DEFAULT_JWT_SECRETS or len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be set to a strong value in production")
        if "*" in self.allow_origins:
            raise ValueError("ALLOW_ORIGINS cannot contain '*' in production")
        return self

    def ensure_uploads_dir(self) -> Path:
        uploads_path = Path(self.uploads_dir).expanduser().resolve()
        uploads_path.mkdir(parents=True, exist_ok=True)
        return uploads_path

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    @property
    def destructive_actions_enabled(self) -> bool:
        if self.is_production:
            return bool(self.allow_destructive_actions)
        return True

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            _CommaListEnvSource(settings_cls),
            _CommaListDotEnvSource(settings_cls),
            file_secret_settings,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_uploads_dir()
    return settings


settings = get_settings()
