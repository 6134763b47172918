"""Application configuration and settings."""

from decimal import Decimal
from functools import lru_cache
from typing import List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Service Configuration
    service_name: str = Field(default="rent-payment-orchestrator", env="SERVICE_NAME")
    service_version: str = Field(default="1.0.0", env="SERVICE_VERSION")
    port: int = Field(default=8000, env="PORT")
    host: str = Field(default="::", env="HOST")
    debug: bool = Field(default=False, env="DEBUG")
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    environment: str = Field(default="development", env="ENVIRONMENT")
    api_prefix: str = Field(default="/api/v1", env="API_PREFIX")

    # Supabase Configuration
    supabase_url: Optional[str] = Field(None, env="SUPABASE_URL")
    supabase_key: Optional[str] = Field(None, env="SUPABASE_KEY")

    # Bank-transfer processor (Dwolla) Configuration
    dwolla_env: str = Field(default="sandbox", env="DWOLLA_ENV")
    dwolla_key: Optional[str] = Field(None, env="DWOLLA_KEY")
    dwolla_secret: Optional[str] = Field(None, env="DWOLLA_SECRET")
    dwolla_webhook_secret: Optional[str] = Field(None, env="DWOLLA_WEBHOOK_SECRET")
    dwolla_timeout_seconds: float = Field(default=30.0, env="DWOLLA_TIMEOUT_SECONDS")

    # Business Rules Configuration
    ach_transaction_fee: Decimal = Field(default=Decimal("0.25"), env="ACH_TRANSACTION_FEE")
    currency: str = Field(default="USD", env="CURRENCY")

    # Circuit Breaker Configuration
    circuit_breaker_failure_threshold: int = Field(default=5, env="CIRCUIT_BREAKER_FAILURE_THRESHOLD")
    circuit_breaker_timeout_seconds: int = Field(default=60, env="CIRCUIT_BREAKER_TIMEOUT_SECONDS")
    token_retry_max_attempts: int = Field(default=3, env="TOKEN_RETRY_MAX_ATTEMPTS")
    token_retry_base_delay_seconds: float = Field(default=1.0, env="TOKEN_RETRY_BASE_DELAY_SECONDS")

    # Development Settings
    enable_cors: bool = Field(default=True, env="ENABLE_CORS")
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        env="CORS_ORIGINS"
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    @field_validator("dwolla_env")
    @classmethod
    def validate_dwolla_env(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("sandbox", "production"):
            raise ValueError("DWOLLA_ENV must be 'sandbox' or 'production'")
        return v

    @field_validator("ach_transaction_fee")
    @classmethod
    def validate_fee(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("ACH transaction fee cannot be negative")
        return v

    @property
    def is_sandbox(self) -> bool:
        """Sandbox funding sources are verified instantly."""
        return self.dwolla_env == "sandbox"

    @property
    def dwolla_api_url(self) -> str:
        if self.dwolla_env == "production":
            return "https://api.dwolla.com"
        return "https://api-sandbox.dwolla.com"

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
