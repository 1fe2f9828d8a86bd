from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Parent consent links stay valid this long after being issued
    consent_expiry_hours: int = Field(72, alias="CONSENT_EXPIRY_HOURS")
    public_base_url: str = Field("http://localhost:8000", alias="PUBLIC_BASE_URL")

    # "smtp" delivers through the SMTP server below, "log" only writes log events
    notifier_backend: str = Field("log", alias="NOTIFIER_BACKEND")
    smtp_host: Optional[str] = Field(None, alias="SMTP_HOST")
    smtp_port: int = Field(587, alias="SMTP_PORT")
    smtp_username: Optional[str] = Field(None, alias="SMTP_USERNAME")
    smtp_password: Optional[str] = Field(None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(True, alias="SMTP_USE_TLS")
    mail_from: str = Field("exeat@localhost", alias="MAIL_FROM")
    consent_copy_email: Optional[str] = Field(None, alias="CONSENT_COPY_EMAIL")

    environment: str = Field("production", alias="ENVIRONMENT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
