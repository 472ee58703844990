from typing import List, Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    env: str = "local"
    log_level: str = "INFO"

    # Either a full URL or the postgres parts below
    db_url: Optional[str] = None
    postgres_user: str = "postgres"
    postgres_password: str = ""
    postgres_db: str = "sneakers"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"

    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    mercadopago_access_token: str = ""
    mercadopago_api_url: str = "https://api.mercadopago.com"
    gateway_timeout_seconds: int = 15

    # Public URL of this API, used to build the webhook notification URL
    backend_url: str = "http://localhost:8000"

    # Synthetic approvals for card charges. Never enable in production.
    payments_test_mode_enabled: bool = False

    payment_expiry_minutes: int = 60 * 24

    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    @property
    def database_url(self):
        if self.db_url:
            return self.db_url
        encoded_password = quote_plus(self.postgres_password)
        return (
            f"postgresql+psycopg2://{self.postgres_user}:"
            f"{encoded_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def webhook_url(self):
        return f"{self.backend_url.rstrip('/')}/payments/webhook"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "allow"

settings = Settings()
