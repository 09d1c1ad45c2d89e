import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    API_KEY: str = os.getenv("API_KEY", "")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # Payment gateway (STK push + transaction status) and order service (fallback probe)
    GATEWAY_BASE_URL: str = os.getenv("GATEWAY_BASE_URL", "http://localhost:3000").rstrip("/")
    ORDER_SERVICE_URL: str = os.getenv("ORDER_SERVICE_URL", "").rstrip("/")
    GATEWAY_TIMEOUT_SEC: float = float(os.getenv("GATEWAY_TIMEOUT_SEC", "5.0"))
    # Sent to the gateway / order service as x-api-key
    GATEWAY_API_KEY: str = os.getenv("GATEWAY_API_KEY", "")

    # Confirmation polling: total budget = CONFIRM_MAX_ATTEMPTS * CONFIRM_INTERVAL_MS (180s by default)
    CONFIRM_MAX_ATTEMPTS: int = int(os.getenv("CONFIRM_MAX_ATTEMPTS", "30"))
    CONFIRM_INTERVAL_MS: int = int(os.getenv("CONFIRM_INTERVAL_MS", "6000"))
    SUCCESS_DISPLAY_DELAY_MS: int = int(os.getenv("SUCCESS_DISPLAY_DELAY_MS", "1500"))
    RETRY_DELAY_MS: int = int(os.getenv("RETRY_DELAY_MS", "1000"))
    # Settled sessions the UI never closed are evicted after this idle time
    SESSION_IDLE_TTL_SEC: float = float(os.getenv("SESSION_IDLE_TTL_SEC", "900"))

    # Host notifications (onSuccess / onFailure / onCancel webhook). Empty disables delivery.
    HOST_CALLBACK_URL: str = os.getenv("HOST_CALLBACK_URL", "")
    HOST_CALLBACK_TIMEOUT_SEC: float = float(os.getenv("HOST_CALLBACK_TIMEOUT_SEC", "5.0"))

    # Observability
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    METRICS_ENABLED: bool = os.getenv("METRICS_ENABLED", "true").lower() == "true"
    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"

    # /admin endpoints
    ADMIN_RBAC_ENABLED: bool = os.getenv("ADMIN_RBAC_ENABLED", "true").lower() == "true"
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

settings = Settings()
