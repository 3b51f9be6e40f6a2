from pydantic_settings import BaseSettings
from typing import Literal, Optional

class Settings(BaseSettings):
    APP_ENV: str = "development"
    PORT: int = 3001
    CORS_ORIGINS: str = "http://localhost:3000"

    # Supabase project. The service key stays on the server.
    SUPABASE_URL: str = "http://localhost:54321"
    SUPABASE_ANON_KEY: str = ""
    SUPABASE_SERVICE_KEY: str = ""
    SUPABASE_TIMEOUT_SECONDS: float = 10.0

    # Certificates
    CERTIFICATES_BUCKET: str = "certificados"
    CERTIFICATE_ALLOWED_TYPES: str = "application/pdf"
    CERTIFICATE_MAX_BYTES: int = 50 * 1024 * 1024
    CERTIFICATE_MAX_FILES: int = 10
    SIGNED_URL_EXPIRY_SECONDS: int = 3600

    # SMTP (OTP delivery)
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM: str = "Seguridad <noreply@localhost>"
    SMTP_USE_TLS: bool = True
    SMTP_TIMEOUT_SECONDS: float = 10.0

    # OTP
    OTP_EXPIRY_MINUTES: int = 5
    OTP_MAX_ATTEMPTS: int = 5
    OTP_RETENTION_SECONDS: int = 600
    OTP_STORE_BACKEND: Literal["memory", "redis"] = "memory"

    # Redis Configuration
    REDIS_HOST: Optional[str] = None
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DB: int = 0

    # Profiles missing on first login are created with DEFAULT_ROLE when enabled
    AUTO_PROVISION_PROFILE: bool = True
    DEFAULT_ROLE: str = "corredor"

    class Config:
        env_file = ".env"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def certificate_allowed_types_list(self) -> list[str]:
        return [t.strip().lower() for t in self.CERTIFICATE_ALLOWED_TYPES.split(",") if t.strip()]

settings = Settings()
