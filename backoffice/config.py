"""
Studio Back-Office — Configuration via environment variables.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """All settings read from env / .env file."""

    app_name: str = Field(default="Studio Back-Office", description="Name used in emails and alerts")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./backoffice.db",
        description="Async SQLAlchemy DB URL",
    )

    # Public dashboard (approval links, signing page, scheduling page)
    public_app_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the client-facing dashboard, no trailing slash",
    )
    approval_token_ttl_days: int = Field(default=7, description="Days an approval link stays valid")
    payment_due_days: int = Field(default=5, description="Days until a payment link is due")

    # Auth (tokens are issued by the identity provider; we only verify them)
    jwt_secret: str = Field(default="change-me", description="HMAC secret shared with the identity provider")
    jwt_algorithm: str = Field(default="HS256")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_webhook_secret: str = Field(default="", description="Signing secret of the webhook endpoint")
    stripe_currency: str = Field(default="brl")
    stripe_webhook_tolerance: int = Field(
        default=300, description="Max age in seconds of a signed webhook payload"
    )

    # Email / SMTP
    smtp_email: str = Field(default="", description="Sender address for outgoing email")
    smtp_app_password: str = Field(default="", description="SMTP app password")
    smtp_host: str = Field(default="smtp.gmail.com")
    smtp_port: int = Field(default=587)

    # Telegram (staff alerts)
    telegram_bot_token: str = Field(default="")
    telegram_chat_id: str = Field(default="")

    # Uploaded contract PDFs
    upload_dir: str = Field(default="./uploads/contratos")

    # Reconciliation job
    reconcile_enabled: bool = Field(default=True, description="Run the periodic settlement drift repair")
    reconcile_interval: int = Field(
        default=600, description="Seconds between reconciliation passes"
    )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
