"""
Configuration management for the AEO Schema Generator.
Handles environment variables and application settings.
"""
import os
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # Server settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")  # json or console

    # Request settings (seconds)
    REQUEST_TIMEOUT: int = int(os.getenv("REQUEST_TIMEOUT", "30"))

    # Anthropic (schema generation and refinement)
    ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
    ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
    AI_REQUEST_TIMEOUT: float = float(os.getenv("AI_REQUEST_TIMEOUT", "120"))

    # Headless browser (milliseconds unless noted)
    BROWSER_HEADLESS: bool = os.getenv("BROWSER_HEADLESS", "true").lower() == "true"
    SCRAPE_TIMEOUT_MS: int = int(os.getenv("SCRAPE_TIMEOUT_MS", "30000"))
    VALIDATE_TIMEOUT_MS: int = int(os.getenv("VALIDATE_TIMEOUT_MS", "15000"))
    SETTLE_DELAY_MS: int = int(os.getenv("SETTLE_DELAY_MS", "1500"))
    EXTRACTION_TIMEOUT: float = float(os.getenv("EXTRACTION_TIMEOUT", "15"))  # seconds
    BROWSER_DRAIN_TIMEOUT: float = float(os.getenv("BROWSER_DRAIN_TIMEOUT", "10"))  # seconds

    # Credits and refinement
    CREDITS_PER_GENERATION: int = int(os.getenv("CREDITS_PER_GENERATION", "1"))
    CREDIT_LOCK_TIMEOUT: float = float(os.getenv("CREDIT_LOCK_TIMEOUT", "5"))  # seconds
    DEFAULT_USER_CREDITS: int = int(os.getenv("DEFAULT_USER_CREDITS", "0"))
    MAX_REFINEMENTS: int = int(os.getenv("MAX_REFINEMENTS", "2"))

    # Retry policy for transient persistence / provider errors
    RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_INITIAL_DELAY: float = float(os.getenv("RETRY_INITIAL_DELAY", "1"))  # seconds

    @classmethod
    def is_anthropic_configured(cls) -> bool:
        """Check if the Anthropic API key is configured."""
        return bool(cls.ANTHROPIC_API_KEY)


config = Config()
