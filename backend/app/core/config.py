from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    ENV: str = "prod"

    DATABASE_URL: str

    JWT_SECRET: str
    TOKEN_TTL_DAYS: int = 7

    OTP_TTL_MINUTES: int = 10
    OTP_MAX_RESENDS: int = 5

    # Proveedor de OTP: twilio|dev
    OTP_PROVIDER: str = "twilio"
    OTP_DEV_CODE: str = "000000"
    OTP_PROVIDER_TIMEOUT_SECONDS: float = 10.0
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_VERIFY_SERVICE_SID: str | None = None
    TWILIO_VERIFY_BASE_URL: str = "https://verify.twilio.com/v2"

    # Cola de envio de OTP: redis|memory
    QUEUE_BACKEND: str = "redis"
    REDIS_URL: str = "redis://localhost:6379/0"
    OTP_QUEUE_NAME: str = "otp-dispatch"
    QUEUE_POLL_TIMEOUT_SECONDS: int = 5

    # Rate limit por telefono: redis|memory
    RATE_LIMIT_BACKEND: str = "redis"
    RATE_LIMIT_WINDOW_SECONDS: int = 600
    RATE_LIMIT_INITIATE_MAX: int = 5
    RATE_LIMIT_RESEND_MAX: int = 3
    RATE_LIMIT_LOGIN_MAX: int = 5

    AUTH_ARTIFACT_RETENTION_DAYS: int = 7

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT_SECONDS: int = 30
    DB_POOL_RECYCLE_SECONDS: int = 1800

    API_WORKERS: int = 2
    ALLOWED_HOSTS: str = "localhost,127.0.0.1"
    SECURITY_HEADERS_ENABLED: bool = True

    LOG_LEVEL: str = "INFO"

    @field_validator("ENV", "OTP_PROVIDER", "QUEUE_BACKEND", "RATE_LIMIT_BACKEND")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().lower()

settings = Settings()
