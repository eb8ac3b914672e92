from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Service account: either the base64 bundle or the raw key fields
    firebase_service_account_b64: Optional[str] = None
    firebase_client_email: Optional[str] = None
    firebase_private_key: Optional[str] = None
    firebase_project_id: Optional[str] = None

    # JSON array of {"tenantId": ..., "branchId": ...}; unset means scan all tenants
    notify_branches: Optional[str] = None
    tenants_collection: str = "merchants"
    orders_collection: str = "orders"

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_whatsapp_from: Optional[str] = None

    send_delay_seconds: float = 1.1
    page_size: int = 10
    # Cross-tenant scans page past undeliverable orders, at most this many pages per event kind
    scan_max_pages: int = 5
    token_refresh_margin_seconds: int = 300
    redis_url: Optional[str] = None
    schedule_interval_seconds: int = 60
    debug: bool = False

    class Config:
        env_file = ".env"

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_whatsapp_from)

settings = Settings()
