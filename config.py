"""
Configuration management for the flow engine service.

Loads environment variables from .env file and provides typed access to configuration.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
env_path = Path(__file__).parent / ".env"
load_dotenv(env_path)


class Config:
    """Configuration class for the flow engine service."""

    # Service
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
    APP_PORT = int(os.getenv("APP_PORT", "8000"))

    # Persistence
    STORE_BACKEND = os.getenv("STORE_BACKEND", "sqlite")
    DATABASE_PATH = os.getenv("DATABASE_PATH", "./flows.db")

    # WhatsApp Cloud API
    GATEWAY_BACKEND = os.getenv("GATEWAY_BACKEND", "whatsapp")
    WHATSAPP_API_BASE = os.getenv("WHATSAPP_API_BASE", "https://graph.facebook.com")
    WHATSAPP_API_VERSION = os.getenv("WHATSAPP_API_VERSION", "v23.0")
    WHATSAPP_APP_SECRET = os.getenv("WHATSAPP_APP_SECRET", "")
    GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "30"))

    # Media relay (CDN)
    CDN_URL = os.getenv("CDN_URL", "")
    CDN_API_KEY = os.getenv("CDN_API_KEY", "")

    # Engine behaviour
    STAMP_SERVER_URL = os.getenv("STAMP_SERVER_URL", "https://stampgen.thepotentialcompany.com")
    FLOW_TIE_BREAK = os.getenv("FLOW_TIE_BREAK", "updated_at")
    DELAY_MODE = os.getenv("DELAY_MODE", "scheduled")
    INLINE_DELAY_MAX_SECONDS = float(os.getenv("INLINE_DELAY_MAX_SECONDS", "20"))
    MAX_STEPS = int(os.getenv("MAX_STEPS", "500"))
    RUNNING_LEASE_SECONDS = float(os.getenv("RUNNING_LEASE_SECONDS", "300"))

    # Sweep endpoint
    SWEEP_TOKEN = os.getenv("SWEEP_TOKEN", "")

    @classmethod
    def validate(cls) -> bool:
        """Validate that required configuration is set."""
        required = []
        if cls.STORE_BACKEND == "sqlite":
            required.append("DATABASE_PATH")
        missing = [key for key in required if not getattr(cls, key)]

        if missing:
            print(f"⚠️  Missing required environment variables: {', '.join(missing)}")
            print(f"   Please set them in .env file")
            return False

        if not cls.SWEEP_TOKEN and cls.DELAY_MODE == "scheduled":
            # Delays still resume lazily on the next message; timeouts wait for one too
            print("⚠️  SWEEP_TOKEN not set: /internal/sweep is disabled")

        return True


if __name__ == "__main__":
    # Test configuration loading
    print("Configuration loaded:")
    print(f"  Environment: {Config.ENVIRONMENT}")
    print(f"  App Port: {Config.APP_PORT}")
    print(f"  Store: {Config.STORE_BACKEND} ({Config.DATABASE_PATH})")
    print(f"  Gateway: {Config.GATEWAY_BACKEND} ({Config.WHATSAPP_API_VERSION})")
    print(f"  App Secret: {'✓ Set' if Config.WHATSAPP_APP_SECRET else '✗ Not set (signatures unchecked)'}")
    print(f"  Media Relay: {'✓ ' + Config.CDN_URL if Config.CDN_URL else '✗ Disabled'}")
    print(f"  Delay Mode: {Config.DELAY_MODE}")
    print(f"\n  Validation: {'✓ PASSED' if Config.validate() else '✗ FAILED'}")
