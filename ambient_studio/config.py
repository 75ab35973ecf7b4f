"""
Configuration management for the workflow core
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Settings:
    """Workflow settings"""

    # Transport
    API_BASE_URL: str = os.getenv("STUDIO_API_BASE_URL", "http://localhost:5000/api")
    API_KEY: str = os.getenv("STUDIO_API_KEY", "")
    HTTP_TIMEOUT: float = float(os.getenv("STUDIO_HTTP_TIMEOUT", "120"))
    HTTP_MAX_RETRIES: int = int(os.getenv("STUDIO_HTTP_MAX_RETRIES", "3"))

    # Generation job polling (in seconds)
    JOB_POLL_INTERVAL: float = float(os.getenv("JOB_POLL_INTERVAL", "3.0"))
    JOB_POLL_TIMEOUT: float = float(os.getenv("JOB_POLL_TIMEOUT", "300"))  # 5 minutes

    # Debounced persistence quiet period (in seconds)
    DEBOUNCE_SECONDS: float = float(os.getenv("DEBOUNCE_SECONDS", "2.0"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON: bool = os.getenv("LOG_JSON", "false").lower() == "true"

    @property
    def mode_prefix(self) -> str:
        """Route prefix for the ambient visual workflow"""
        return "/ambient-visual"

    def validate(self) -> None:
        """
        Validate timing configuration.
        Raises ValueError if any interval is not positive.
        """
        if self.JOB_POLL_INTERVAL <= 0:
            raise ValueError("JOB_POLL_INTERVAL must be positive")
        if self.JOB_POLL_TIMEOUT <= 0:
            raise ValueError("JOB_POLL_TIMEOUT must be positive")
        if self.DEBOUNCE_SECONDS <= 0:
            raise ValueError("DEBOUNCE_SECONDS must be positive")
        if self.HTTP_MAX_RETRIES < 1:
            raise ValueError("STUDIO_HTTP_MAX_RETRIES must be at least 1")


# Global settings instance
settings = Settings()
