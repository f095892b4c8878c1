from functools import lru_cache
import os
from pydantic import BaseModel, Field


class Settings(BaseModel):
    env: str = Field(default="dev", alias="ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    postgres_db: str = Field(default="tutorbook", alias="POSTGRES_DB")
    postgres_user: str = Field(default="tutorbook", alias="POSTGRES_USER")
    postgres_password: str = Field(default="tutorbook", alias="POSTGRES_PASSWORD")
    postgres_host: str = Field(default="localhost", alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, alias="POSTGRES_PORT")

    jwt_secret: str = Field(default="secret", alias="JWT_SECRET")
    jwt_expire_min: int = Field(default=43200, alias="JWT_EXPIRE_MIN")

    app_base_url: str = Field(default="http://localhost:3000", alias="APP_BASE_URL")
    cron_secret: str = Field(default="", alias="CRON_SECRET")
    scheduler_enabled: bool = Field(default=False, alias="SCHEDULER_ENABLED")

    payment_provider: str = Field(default="stub", alias="PAYMENT_PROVIDER")
    payment_currency: str = Field(default="usd", alias="PAYMENT_CURRENCY")
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")

    email_api_url: str = Field(default="https://api.resend.com/emails", alias="EMAIL_API_URL")
    email_api_key: str = Field(default="", alias="EMAIL_API_KEY")
    email_from: str = Field(default="Tutorbook <no-reply@tutorbook.local>", alias="EMAIL_FROM")

    class Config:
        populate_by_name = True

    @property
    def checkout_success_url(self) -> str:
        return f"{self.app_base_url.rstrip('/')}/dashboard?payment=success"

    @property
    def checkout_cancel_url(self) -> str:
        return f"{self.app_base_url.rstrip('/')}/dashboard?payment=cancelled"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(**os.environ)
