"""
Configuration settings for the Coin Market Pipeline.
Uses environment variables with sensible defaults.
"""
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load environment variables
env_path = Path(__file__).parent / '.env'
if env_path.exists():
    load_dotenv(dotenv_path=env_path, override=False)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    """Configuration settings"""

    # Server Configuration
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    RELOAD: bool = _env_bool("RELOAD", "False")

    # Database Configuration
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "coins.db")

    # Ingest Configuration
    COINS_API_URL: str = os.getenv(
        "COINS_API_URL", "https://authentication.bit24hr.in/api/v1/get-coins"
    )
    INGEST_ENABLED: bool = _env_bool("INGEST_ENABLED", "True")
    INGEST_INTERVAL: float = float(os.getenv("INGEST_INTERVAL", "1.0"))
    FETCH_TIMEOUT: float = float(os.getenv("FETCH_TIMEOUT", "0.9"))

    # Snapshot Configuration
    SNAPSHOT_WINDOW: float = float(os.getenv("SNAPSHOT_WINDOW", "1.0"))

    # Streaming Configuration
    STREAM_URL: str = os.getenv("STREAM_URL", "wss://stream.bit24hr.in/coin_market_history/")
    HANDSHAKE_TIMEOUT: float = float(os.getenv("HANDSHAKE_TIMEOUT", "10"))
    BROADCAST_MAX_WORKERS: int = int(os.getenv("BROADCAST_MAX_WORKERS", "8"))
    BROADCAST_ON_INGEST: bool = _env_bool("BROADCAST_ON_INGEST", "False")

    def problems(self) -> List[str]:
        """Return a list of configuration problems, empty when valid"""
        problems = []

        if not self.COINS_API_URL:
            problems.append("COINS_API_URL is not set")
        if self.INGEST_INTERVAL <= 0:
            problems.append("INGEST_INTERVAL must be positive")
        if self.FETCH_TIMEOUT >= self.INGEST_INTERVAL:
            problems.append(
                f"FETCH_TIMEOUT ({self.FETCH_TIMEOUT}s) must be less than "
                f"INGEST_INTERVAL ({self.INGEST_INTERVAL}s)"
            )
        if self.SNAPSHOT_WINDOW <= 0:
            problems.append("SNAPSHOT_WINDOW must be positive")
        if self.BROADCAST_MAX_WORKERS < 1:
            problems.append("BROADCAST_MAX_WORKERS must be at least 1")
        if self.BROADCAST_ON_INGEST and not self.STREAM_URL:
            problems.append("BROADCAST_ON_INGEST requires STREAM_URL")

        return problems

    def validate(self) -> bool:
        """Validate configuration"""
        problems = self.problems()

        for problem in problems:
            print(f"Invalid configuration: {problem}")

        return not problems

    def print_config(self):
        """Print current configuration"""
        print("=" * 50)
        print("Coin Market Pipeline Configuration")
        print("=" * 50)
        print(f"Host: {self.HOST}")
        print(f"Port: {self.PORT}")
        print(f"Log Level: {self.LOG_LEVEL}")
        print(f"Database Path: {self.DATABASE_PATH}")
        print(f"Coins API: {self.COINS_API_URL}")
        print(f"Ingest: {'enabled' if self.INGEST_ENABLED else 'disabled'} "
              f"(every {self.INGEST_INTERVAL}s, timeout {self.FETCH_TIMEOUT}s)")
        print(f"Snapshot Window: {self.SNAPSHOT_WINDOW}s")
        print(f"Stream URL: {self.STREAM_URL}")
        print(f"Broadcast Workers: {self.BROADCAST_MAX_WORKERS}")
        print(f"Broadcast On Ingest: {self.BROADCAST_ON_INGEST}")
        print("=" * 50)


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings"""
    return settings
