"""
Configuration for the Legal Aid Backend
=======================================

Environment variables:
- SESSION_SECRET: HMAC secret used to sign session tokens
- SESSION_COOKIE_NAME: Cookie carrying the session token (default: session)
- SESSION_TTL_MINUTES: Session lifetime (default: 720)
- SESSION_COOKIE_SECURE: Mark the cookie Secure (default: false)
- BCRYPT_ROUNDS: bcrypt cost factor (default: 12)
- REDIS_URL: Optional Redis for session revocation + rate limiting
- CORS_ALLOW_ORIGINS: Comma separated list of allowed origins
- RATE_LIMIT_ENABLED / RATE_LIMIT_PER_MINUTE: General per-IP limit
- REGISTER_RATE_LIMIT / REGISTER_RATE_WINDOW_SECONDS: Self-registration limit
- LOG_LEVEL: Root log level (default: INFO)
"""

from typing import Optional, List
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Sessions
    session_secret: str = "dev-session-secret-change-in-production"
    session_algorithm: str = "HS256"
    session_cookie_name: str = "session"
    session_ttl_minutes: int = 720
    session_cookie_secure: bool = False

    # Password hashing
    bcrypt_rounds: int = 12

    # Redis (optional)
    redis_url: Optional[str] = None

    # HTTP
    cors_allow_origins: str = "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000"

    # Rate limiting
    rate_limit_enabled: bool = False
    rate_limit_per_minute: int = 120
    register_rate_limit: int = 10
    register_rate_window_seconds: int = 600

    # Logging
    log_level: str = "INFO"

    # Service info
    service_name: str = "legalaid"
    service_version: str = "1.0.0"

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"

    def cors_origins(self) -> List[str]:
        """Parse CORS_ALLOW_ORIGINS into a clean list"""
        origins: List[str] = []
        for item in self.cors_allow_origins.split(","):
            origin = item.strip().strip('"').strip("'").rstrip("/")
            if origin:
                origins.append(origin)
        return origins

    def validate_security_config(self) -> List[str]:
        """Return warnings for insecure settings"""
        warnings = []
        if self.session_secret.startswith("dev-"):
            warnings.append("SESSION_SECRET is the development default")
        if not self.session_cookie_secure:
            warnings.append("SESSION_COOKIE_SECURE=false (cookie sent over plain HTTP)")
        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
