import json
from typing import List, Literal, Union

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Pharmacy POS Shipping Ledger"
    env: str = "dev"

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # ORDER NUMBERS
    order_number_prefix: str = Field(default="SO", max_length=10)
    order_number_sequence_digits: int = Field(default=3, ge=1, le=8)
    order_number_short_year: bool = False
    order_number_max_attempts: int = Field(default=5, ge=1, le=50)

    # ORDERS
    default_payment_status: str = "unpaid"

    # INVENTORY
    allow_negative_stock: bool = False
    ledger_page_size: int = Field(default=500, ge=1, le=10_000)
    fifo_shortfall_cost_policy: Literal["revenue", "zero"] = "revenue"

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON value must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @field_validator("order_number_prefix", mode="before")
    @classmethod
    def normalize_order_number_prefix(cls, value: str | None) -> str:
        if value is None:
            return ""
        return str(value).strip().upper()

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.database_url.lower().startswith("sqlite"):
            raise ValueError("DATABASE_URL cannot point at SQLite in production")
        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
