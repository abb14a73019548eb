"""
Runtime configuration.

Everything environment-driven is read once by Settings.from_env() and handed
to the services explicitly, so nothing below main.py reads os.environ.
"""
import os
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class PaytmConfig(BaseModel):
    mid: str = Field(..., description="Merchant id issued by the gateway")
    merchant_key: str = Field(..., description="Shared secret used for checksums")
    website: str = "WEBSTAGING"
    channel_id: str = "WEB"
    industry_type_id: str = "Retail"
    order_id_prefix: str = "AARAMB_"
    callback_url: str = "http://localhost:8000/api/payments/paytm/callback"
    production: bool = False

    staging_url: str = "https://securegw-stage.paytm.in/theia/processTransaction"
    production_url: str = "https://securegw.paytm.in/theia/processTransaction"
    status_query_url_staging: str = "https://securegw-stage.paytm.in/v3/order/status"
    status_query_url_production: str = "https://securegw.paytm.in/v3/order/status"

    @property
    def transaction_url(self) -> str:
        return self.production_url if self.production else self.staging_url

    @property
    def status_query_url(self) -> str:
        if self.production:
            return self.status_query_url_production
        return self.status_query_url_staging


class Settings(BaseModel):
    frontend_url: str = "http://localhost:5173"
    jwt_secret: str = "devsecret"
    paytm: PaytmConfig
    order_timeout_minutes: int = Field(30, gt=0)
    deal_sweep_interval_seconds: int = Field(3600, gt=0)
    order_reaper_interval_seconds: int = Field(900, gt=0)
    log_level: LogLevel = "INFO"

    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value):
        return value.upper() if isinstance(value, str) else value

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.getenv("APP_ENV") or os.getenv("NODE_ENV") or "development"
        paytm = PaytmConfig(
            mid=os.getenv("PAYTM_MID", "your_merchant_id"),
            merchant_key=os.getenv("PAYTM_MERCHANT_KEY", "your_merchant_key"),
            website=os.getenv("PAYTM_WEBSITE", "WEBSTAGING"),
            callback_url=os.getenv(
                "PAYTM_CALLBACK_URL",
                "http://localhost:8000/api/payments/paytm/callback",
            ),
            production=env == "production",
        )
        return cls(
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:5173"),
            jwt_secret=os.getenv("JWT_SECRET", "devsecret"),
            paytm=paytm,
            order_timeout_minutes=int(os.getenv("ORDER_TIMEOUT_MINUTES", 30)),
            deal_sweep_interval_seconds=int(os.getenv("DEAL_SWEEP_INTERVAL_SECONDS", 3600)),
            order_reaper_interval_seconds=int(os.getenv("ORDER_REAPER_INTERVAL_SECONDS", 900)),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET"),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
