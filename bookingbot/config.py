"""Configuration management for the booking bot."""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Application configuration."""

    # Database / broker
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./bookingbot.db")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # OpenAI Configuration
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_MAX_TOKENS: int = int(os.getenv("OPENAI_MAX_TOKENS", "400"))
    OPENAI_TEMPERATURE: float = float(os.getenv("OPENAI_TEMPERATURE", "0.7"))

    # Twilio Configuration (WhatsApp sender)
    TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    TWILIO_WHATSAPP_NUMBER: str = os.getenv("TWILIO_WHATSAPP_NUMBER", "whatsapp:+14155238886")
    # Reject webhook posts without a valid X-Twilio-Signature
    VALIDATE_TWILIO_SIGNATURE: bool = os.getenv("VALIDATE_TWILIO_SIGNATURE", "False").lower() == "true"

    # Google Calendar OAuth
    GOOGLE_CLIENT_ID: str = os.getenv("GOOGLE_CLIENT_ID", "")
    GOOGLE_CLIENT_SECRET: str = os.getenv("GOOGLE_CLIENT_SECRET", "")
    GOOGLE_REDIRECT_URI: str = os.getenv("GOOGLE_REDIRECT_URI", "http://localhost:8000/oauth2callback")

    # Scheduling
    # All stored times are wall-clock times in this zone.
    BUSINESS_TIMEZONE: str = os.getenv("BUSINESS_TIMEZONE", "Asia/Jerusalem")
    SLOT_HORIZON_DAYS: int = int(os.getenv("SLOT_HORIZON_DAYS", "14"))
    CONTEXT_FREE_SLOTS: int = int(os.getenv("CONTEXT_FREE_SLOTS", "8"))
    CONTEXT_BUSY_SLOTS: int = int(os.getenv("CONTEXT_BUSY_SLOTS", "20"))
    HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "10"))

    # Calendar sync (reconciler)
    CALENDAR_SYNC_DAYS: int = int(os.getenv("CALENDAR_SYNC_DAYS", "30"))
    CALENDAR_SYNC_INTERVAL_SECONDS: int = int(os.getenv("CALENDAR_SYNC_INTERVAL_SECONDS", "300"))
    CALENDAR_SYNC_STARTUP_DELAY_SECONDS: int = int(os.getenv("CALENDAR_SYNC_STARTUP_DELAY_SECONDS", "10"))

    # Cleanup (sweeper)
    CLEANUP_INTERVAL_SECONDS: int = int(os.getenv("CLEANUP_INTERVAL_SECONDS", str(24 * 60 * 60)))
    CLEANUP_STARTUP_DELAY_SECONDS: int = int(os.getenv("CLEANUP_STARTUP_DELAY_SECONDS", "60"))
    CONVERSATION_RETENTION_DAYS: int = int(os.getenv("CONVERSATION_RETENTION_DAYS", "30"))
    FAR_FUTURE_DAYS: int = int(os.getenv("FAR_FUTURE_DAYS", "90"))

    # Run the sync/cleanup loops inside the web process.
    # Disable when a Celery beat worker owns the schedule.
    RUN_BACKGROUND_JOBS: bool = os.getenv("RUN_BACKGROUND_JOBS", "True").lower() == "true"

    # Application Settings
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    # Public URL Twilio posts to, when behind a proxy; empty means the request URL is used
    BASE_URL: str = os.getenv("BASE_URL", "")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Security
    API_KEY: str = os.getenv("API_KEY", "")  # For admin/debug endpoints

    @classmethod
    def has_openai_key(cls) -> bool:
        """Check if OpenAI API key is configured."""
        return bool(cls.OPENAI_API_KEY)

    @classmethod
    def has_twilio_config(cls) -> bool:
        """Check if Twilio configuration is complete."""
        return all([
            cls.TWILIO_ACCOUNT_SID,
            cls.TWILIO_AUTH_TOKEN,
            cls.TWILIO_WHATSAPP_NUMBER,
        ])

    @classmethod
    def has_google_oauth(cls) -> bool:
        """Check if the Google OAuth client is configured."""
        return bool(cls.GOOGLE_CLIENT_ID and cls.GOOGLE_CLIENT_SECRET)


# Create a global config instance
config = Config()
