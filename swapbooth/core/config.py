"""
Core configuration settings for the application.
"""
import json
from typing import List, Optional, Union
from pydantic import Field, ConfigDict, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase Configuration
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_anon_key: str = Field(..., description="Supabase anonymous key")
    supabase_service_role_key: str = Field(..., description="Supabase service role key")

    # JWT Configuration (Supabase Auth tokens)
    jwt_secret_key: str = Field(..., description="Supabase JWT secret used to verify access tokens")
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")
    jwt_audience: str = Field(default="authenticated", description="Expected audience of Supabase tokens")

    # FastAPI Configuration
    api_v1_str: str = Field(default="/api/v1", description="API v1 prefix")
    project_name: str = Field(default="swapbooth", description="Project name")
    environment: str = Field(default="dev", description="Environment (dev, staging, production)")
    debug: bool = Field(default=False, description="Debug mode - set True only for local development")

    # CORS Configuration
    allowed_origins: List[str] = Field(
        default=[
            "https://swapbooth.app",
            "https://www.swapbooth.app",
        ],
        description="Allowed CORS origins (production)"
    )

    @field_validator('allowed_origins', mode='before')
    @classmethod
    def parse_allowed_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse ALLOWED_ORIGINS from string (JSON) or list."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except (json.JSONDecodeError, ValueError):
                return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @property
    def is_production_environment(self) -> bool:
        """Check if running in production environment."""
        return self.environment in ["production", "prod"]

    @property
    def effective_cors_origins(self) -> List[str]:
        """
        Get CORS origins based on environment.

        - Production: Only the configured origins
        - Development: Adds localhost origins for local testing
        """
        origins = list(self.allowed_origins)

        if not self.is_production_environment and self.debug:
            for origin in ["http://localhost:3000", "http://127.0.0.1:3000"]:
                if origin not in origins:
                    origins.append(origin)

        return origins

    # Anonymous session cookie
    anon_cookie_name: str = Field(default="anon_id", description="Cookie carrying the anonymous session token")
    anon_cookie_max_age: int = Field(default=24 * 60 * 60, description="Anonymous cookie lifetime in seconds")
    cookie_secure: bool = Field(default=False, description="Use secure cookies (HTTPS only) - auto-enabled in production")

    # Anonymous usage cache
    anon_cache_ttl_seconds: int = Field(default=60, description="TTL of the session-token usage cache")
    anon_fallback_ttl_seconds: int = Field(default=24 * 60 * 60, description="TTL of the network-address fallback")
    anon_fallback_max_entries: int = Field(default=10000, description="Fallback size that triggers compaction")
    usage_sweep_interval_seconds: int = Field(default=300, description="Interval of the background cache sweep")
    anon_counter_window_seconds: int = Field(default=24 * 60 * 60, description="Window after which persisted anonymous counts restart")

    # Admin debug mode
    admin_password: Optional[str] = Field(default=None, description="Admin password; admin mode is disabled when unset")
    admin_session_ttl_seconds: int = Field(default=24 * 60 * 60, description="Admin session lifetime")
    admin_login_rate_limit: str = Field(default="5/15minutes", description="slowapi limit for admin login attempts")

    # Request burst throttle (per client IP)
    burst_limit_per_window: int = Field(default=10, description="Requests allowed per window on throttled paths")
    burst_window_seconds: int = Field(default=60, description="Burst throttle window")
    burst_throttled_paths: List[str] = Field(
        default=["/api/v1/generations"],
        description="Path prefixes guarded by the burst throttle"
    )
    burst_max_tracked_addresses: int = Field(default=10000, description="Most client addresses the burst throttle tracks at once")

    # Product
    upgrade_url: str = Field(default="/pricing", description="Where limit-reached responses point users")
    generation_history_limit: int = Field(default=10, description="Default number of history entries returned")

    @property
    def effective_cookie_secure(self) -> bool:
        """Secure cookies are forced on in production."""
        return self.cookie_secure or self.is_production_environment

    model_config = ConfigDict(
        env_file=".env.dev",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
