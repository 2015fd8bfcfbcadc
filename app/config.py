#config.py
import os
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict
from typing import Optional, List
from functools import lru_cache

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    # Application Settings
    APP_NAME: str = "Multi-Role Auth API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    DOCS_ENABLED: bool = True  # Can disable in production

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = int(os.environ.get("PORT", 8000))
    WORKERS: int = 1

    # Database Settings
    DATABASE_URL: str = "sqlite:///./auth.db"

    # Token Settings (all TTLs in seconds)
    TOKEN_SIGNING_SECRET: str = "change-me-in-prod"
    TOKEN_ALGORITHM: str = "HS256"
    TOKEN_ISSUER: str = "multirole-auth"
    ACCESS_TOKEN_TTL: int = 15 * 60
    REFRESH_TOKEN_TTL: int = 30 * 24 * 3600
    ROLE_SELECTION_TTL: int = 5 * 60

    # OTP Settings
    OTP_LENGTH: int = 6
    OTP_TTL: int = 10 * 60
    OTP_MAX_ATTEMPTS: int = 5
    OTP_HASH_SECRET: Optional[str] = None  # falls back to TOKEN_SIGNING_SECRET
    OTP_DELIVERY_GRACE: int = 2 * 60
    OTP_RESEND_INTERVAL: int = 30
    OTP_MESSAGE_TEMPLATE: str = "Your verification code is {code}. It expires in {minutes} minutes. Do not share this code with anyone."

    # Abuse Guard (count per window, windows in seconds)
    OTP_REQUEST_RATE_LIMIT: int = 5
    OTP_REQUEST_RATE_WINDOW: int = 3600
    OTP_RESEND_RATE_LIMIT: int = 3
    OTP_VERIFY_RATE_LIMIT: int = 10
    OTP_VERIFY_RATE_WINDOW: int = 15 * 60
    IP_OTP_REQUEST_RATE_LIMIT: int = 30
    IP_OTP_VERIFY_RATE_LIMIT: int = 60
    AUTH_RATE_LIMIT: int = 60
    AUTH_RATE_WINDOW: int = 60
    REDIS_URL: Optional[str] = None
    # Peers whose X-Forwarded-For is honored (comma-separated IPs); empty trusts none
    TRUSTED_PROXIES: str = ""

    # Account lockout after repeated failed login verifications
    ACCOUNT_LOCK_THRESHOLD: int = 10
    ACCOUNT_LOCK_DURATION: int = 2 * 3600

    # Background cleanup of expired OTP/token rows (0 disables)
    CLEANUP_INTERVAL_SECONDS: int = 300

    # CORS Settings (accept comma-separated strings to avoid JSON parsing in env)
    ALLOWED_ORIGINS: str = "*"
    ALLOWED_METHODS: str = "GET,POST,PATCH,OPTIONS"
    ALLOWED_HEADERS: str = "*"
    CORS_ALLOW_CREDENTIALS: bool = True

    # Twilio Settings (SMS gateway; console gateway is used when unset)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Accept comma-separated strings for list envs in addition to JSON arrays
    def _split_csv(self, value: str) -> List[str]:
        if value is None:
            return []
        value = value.strip()
        if value == "":
            return []
        return [item.strip() for item in value.split(",")]

    @property
    def allowed_origins_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_ORIGINS)

    @property
    def allowed_methods_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_METHODS)

    @property
    def allowed_headers_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_HEADERS)

    @property
    def trusted_proxies_list(self) -> List[str]:
        return self._split_csv(self.TRUSTED_PROXIES)

    @property
    def otp_hash_secret(self) -> str:
        return self.OTP_HASH_SECRET or self.TOKEN_SIGNING_SECRET

    @property
    def twilio_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_PHONE_NUMBER)

    @property
    def signing_secret_configured(self) -> bool:
        return bool(self.TOKEN_SIGNING_SECRET and self.TOKEN_SIGNING_SECRET != "change-me-in-prod")


@lru_cache()
def get_settings() -> Settings:
    s = Settings()
    # Normalize ALLOWED_ORIGINS if provided as comma-separated string env var CORS_ORIGINS
    cors_env = os.environ.get("CORS_ORIGINS")
    if cors_env:
        s.ALLOWED_ORIGINS = cors_env
    return s

settings: Settings = get_settings()
