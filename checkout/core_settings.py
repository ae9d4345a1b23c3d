from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Literal, Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "eci"
    POSTGRES_USER: str = "eci"
    POSTGRES_PASSWORD: str = "eci"
    # Overrides the POSTGRES_* composition (e.g. sqlite for local runs)
    DATABASE_URL: Optional[str] = None

    SERVICE_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # Checkout
    PAYMENT_GATEWAY: str = "phonepe"
    CURRENCY: str = "INR"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    STOCK_POLICY_ON_GATEWAY_FAILURE: Literal["restore", "reserve"] = "restore"

    # PhonePe
    PHONEPE_MERCHANT_ID: Optional[str] = None
    PHONEPE_SALT_KEY: Optional[str] = None
    PHONEPE_SALT_INDEX: str = "1"
    PHONEPE_BASE_URL: str = "https://api-preprod.phonepe.com/apis/pg-sandbox"
    PHONEPE_REDIRECT_URL: str = "http://localhost:5173/checkout/success"
    PHONEPE_CALLBACK_URL: str = "http://localhost:8000/checkout/webhooks/phonepe"

    # Razorpay
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com"

    # In-process gateway for local development
    FAKE_GATEWAY_ENABLED: bool = False
    FAKE_GATEWAY_SECRET: str = "fake-webhook-secret"

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

@lru_cache
def get_settings() -> Settings:
    return Settings()
