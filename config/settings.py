"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.
    
    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """
    
    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )
    
    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )
    
    # ===================
    # POSITION MATCHING
    # ===================
    match_text_weight: float = Field(
        default=0.6,
        ge=0,
        le=10,
        description="Weight of work-name similarity in the composite score"
    )
    match_context_weight: float = Field(
        default=0.3,
        ge=0,
        le=10,
        description="Weight of position-number similarity in the composite score"
    )
    match_type_weight: float = Field(
        default=0.1,
        ge=0,
        le=10,
        description="Weight of position-type similarity in the composite score"
    )
    match_threshold: float = Field(
        default=0.5,
        ge=0,
        le=1,
        description="Minimum composite score to pair an old position with a new one"
    )
    auto_confirm_threshold: float = Field(
        default=0.9,
        ge=0,
        le=1,
        description="Composite score at or above which a pairing is exact and auto-confirmed"
    )
    
    # ===================
    # DATA TRANSFER
    # ===================
    transfer_max_workers: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Worker threads used to transfer BOQ data between versions"
    )
    storage_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per storage call before a transient failure is recorded"
    )
    storage_retry_base_delay: float = Field(
        default=0.2,
        ge=0,
        le=10,
        description="Base backoff delay in seconds (doubles per attempt)"
    )
    
    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )
    
    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    
    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.
    
    Returns:
        Settings: Application settings
        
    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
