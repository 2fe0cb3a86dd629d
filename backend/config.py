"""
Community Mail - Configuration Management

Centralized configuration for environment variables, CORS, and deployment settings.
This module ensures:
- No hardcoded secrets
- No missing required variables
- Environment-specific settings (dev/staging/prod)
- An explicit provisioning configuration object that is injected into services
"""

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, FrozenSet, List, Mapping

from pydantic import Field
from pydantic_settings import BaseSettings

from models.community import CommunityProfile, DEFAULT_COMMUNITIES, apply_overrides
from models.enums import CommunityType

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="PostgreSQL connection URL (required)"
    )
    POSTGRES_HOST: str = Field(default="")
    POSTGRES_PORT: int = Field(default=5432)
    POSTGRES_DB: str = Field(default="community_mail")
    POSTGRES_USER: str = Field(default="")
    POSTGRES_PASSWORD: str = Field(default="")
    POSTGRES_SSLMODE: str = Field(default="require")

    # ==================== AUTHENTICATION ====================
    JWT_SECRET_KEY: str = Field(
        default="",
        description="Key used to verify sign-in session tokens (required)"
    )
    JWT_ALGORITHM: str = Field(
        default="HS256",
        description="JWT signing algorithm"
    )
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(
        default=60,
        description="Session token expiry in minutes"
    )
    ADMIN_EMAILS: str = Field(
        default="",
        description="Comma-separated admin allow-list"
    )

    # ==================== PROVISIONING ====================
    EMAIL_DOMAIN: str = Field(
        default="awscommunity.mx",
        description="Domain of provisioned addresses"
    )
    ORGANIZATION_NAME: str = Field(
        default="AWS Community MX",
        description="Name used in notifications"
    )
    COMMUNITY_OVERRIDES: Dict[str, Dict[str, str]] = Field(
        default_factory=dict,
        description="JSON object of per-type overrides (label, group_email, org_unit, prefix)"
    )
    SECRET_HASH_ROUNDS: int = Field(
        default=12,
        description="bcrypt cost factor for community secrets"
    )
    TEMP_PASSWORD_LENGTH: int = Field(
        default=16,
        description="Length of generated temporary passwords"
    )
    AVATAR_MAX_BYTES: int = Field(
        default=2 * 1024 * 1024,
        description="Maximum decoded avatar size"
    )

    # ==================== GOOGLE WORKSPACE ====================
    GOOGLE_SERVICE_ACCOUNT_KEY: str = Field(
        default="",
        description="Base64-encoded service account JSON key"
    )
    GOOGLE_ADMIN_EMAIL: str = Field(
        default="",
        description="Workspace admin impersonated through domain-wide delegation"
    )
    GOOGLE_API_TIMEOUT: float = Field(
        default=30.0,
        description="Timeout for directory API calls in seconds"
    )

    # ==================== RATE LIMITING ====================
    REDIS_URL: str = Field(
        default="",
        description="Redis URL for shared admission counters"
    )
    RATE_LIMIT_IN_MEMORY: bool = Field(
        default=False,
        description="Use process-local counters when REDIS_URL is not set"
    )
    RATE_LIMIT_FAIL_OPEN: bool = Field(
        default=True,
        description="Admit requests when the counter backend is unreachable"
    )
    RATE_LIMIT_REGISTRATION: int = Field(default=3)
    RATE_LIMIT_REGISTRATION_WINDOW: int = Field(default=3600)
    RATE_LIMIT_VERIFICATION: int = Field(default=10)
    RATE_LIMIT_VERIFICATION_WINDOW: int = Field(default=60)
    RATE_LIMIT_AVAILABILITY: int = Field(default=30)
    RATE_LIMIT_AVAILABILITY_WINDOW: int = Field(default=60)

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="Community Mail Provisioning API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def admin_emails_list(self) -> List[str]:
        return [e.strip().lower() for e in self.ADMIN_EMAILS.split(",") if e.strip()]

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS_ORIGINS into a list with environment-aware defaults.

        Production/Staging: Only specified origins
        Development: Include localhost origins
        """
        if self.CORS_ORIGINS and self.CORS_ORIGINS != "*":
            origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        else:
            origins = []

        dev_origins = [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
        ]

        all_origins = set(origins)
        if not self.is_production:
            all_origins.update(dev_origins)

        return list(all_origins)

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.DATABASE_URL and not self.POSTGRES_HOST:
            errors.append("DATABASE_URL is required")

        if not self.JWT_SECRET_KEY:
            errors.append("JWT_SECRET_KEY is required")
        elif len(self.JWT_SECRET_KEY) < 32:
            errors.append("JWT_SECRET_KEY should be at least 32 characters")

        if not self.admin_emails_list:
            errors.append("ADMIN_EMAILS must name at least one administrator")

        if self.SECRET_HASH_ROUNDS < 10:
            errors.append("SECRET_HASH_ROUNDS must be at least 10")

        unknown = set(self.COMMUNITY_OVERRIDES) - {t.value for t in CommunityType}
        if unknown:
            errors.append(f"COMMUNITY_OVERRIDES has unknown types: {sorted(unknown)}")

        if self.is_production:
            if self.CORS_ORIGINS == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")

            if "localhost" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot point to localhost in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

            if not (self.GOOGLE_SERVICE_ACCOUNT_KEY and self.GOOGLE_ADMIN_EMAIL):
                errors.append("GOOGLE_SERVICE_ACCOUNT_KEY and GOOGLE_ADMIN_EMAIL are required")

        return errors

    def get_database_url(self) -> str:
        """Get the appropriate database URL"""
        if self.DATABASE_URL:
            url = self.DATABASE_URL
            # Ensure asyncpg driver is used
            if url.startswith("postgresql://"):
                url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
            elif url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql+asyncpg://", 1)
            return url

        if self.POSTGRES_HOST and self.POSTGRES_USER and self.POSTGRES_PASSWORD:
            return (
                f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )

        raise ValueError("No database configuration found. Set DATABASE_URL or POSTGRES_* variables.")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== PROVISIONING CONFIGURATION ====================

@dataclass(frozen=True)
class ProvisioningConfig:
    """
    Everything the provisioning services need to know about the deployment.

    Built once from Settings and passed to services explicitly, so no
    service reads the environment on its own.
    """
    domain: str
    communities: Mapping[CommunityType, CommunityProfile]
    admin_emails: FrozenSet[str] = field(default_factory=frozenset)
    organization_name: str = "AWS Community MX"
    avatar_max_bytes: int = 2 * 1024 * 1024

    def community(self, community_type: CommunityType) -> CommunityProfile:
        return self.communities[CommunityType(community_type)]

    def full_email(self, community_type: CommunityType, local_part: str) -> str:
        profile = self.community(community_type)
        return f"{profile.prefix}{local_part}@{self.domain}"

    def is_admin(self, email: str) -> bool:
        return bool(email) and email.strip().lower() in self.admin_emails

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProvisioningConfig":
        return cls(
            domain=settings.EMAIL_DOMAIN,
            communities=apply_overrides(DEFAULT_COMMUNITIES, settings.COMMUNITY_OVERRIDES),
            admin_emails=frozenset(settings.admin_emails_list),
            organization_name=settings.ORGANIZATION_NAME,
            avatar_max_bytes=settings.AVATAR_MAX_BYTES,
        )


@lru_cache()
def get_provisioning_config() -> ProvisioningConfig:
    return ProvisioningConfig.from_settings(get_settings())


# ==================== CORS CONFIGURATION ====================

def get_cors_config() -> dict:
    """
    Get CORS middleware configuration.

    Returns configuration dict for CORSMiddleware.
    """
    settings = get_settings()

    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        "allow_headers": [
            "Authorization",
            "Content-Type",
            "Accept",
            "Origin",
            "X-Requested-With",
            "X-Request-ID",
        ],
        "expose_headers": [
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        "max_age": 600,
    }


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment() -> dict:
    """
    Validate all required environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    required_vars = [
        ("DATABASE_URL", settings.DATABASE_URL or settings.POSTGRES_HOST),
        ("JWT_SECRET_KEY", settings.JWT_SECRET_KEY),
        ("ADMIN_EMAILS", settings.ADMIN_EMAILS),
    ]

    for name, value in required_vars:
        if not value:
            status["errors"].append(f"{name} is not set")
            status["valid"] = False
        else:
            status["variables"][name] = "✓ Set"

    optional_vars = [
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking disabled"),
        ("REDIS_URL", settings.REDIS_URL, "Shared rate limiting disabled"),
        ("GOOGLE_SERVICE_ACCOUNT_KEY", settings.GOOGLE_SERVICE_ACCOUNT_KEY, "Google Workspace provisioning disabled"),
        ("GOOGLE_ADMIN_EMAIL", settings.GOOGLE_ADMIN_EMAIL, "Google Workspace provisioning disabled"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            status["warnings"].append(warning)
            status["variables"][name] = "⚠ Not set"
        else:
            status["variables"][name] = "✓ Set"

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(e for e in errors if e not in status["errors"])
        status["valid"] = False

    return status
