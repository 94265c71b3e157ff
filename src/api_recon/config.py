"""Runtime configuration, read from environment variables."""

import os
from dataclasses import dataclass

VERSION = "0.1.0"

OUTPUT_FORMATS = ("json", "yaml")


@dataclass
class AppConfig:
    """Settings shared by the document loader and the CLI."""

    http_timeout: float = 30.0
    user_agent: str = f"api-recon/{VERSION}"
    output_format: str = "json"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load config from environment variables, falling back to defaults."""
        output_format = os.getenv("API_RECON_OUTPUT_FORMAT", "json").lower()
        if output_format not in OUTPUT_FORMATS:
            output_format = "json"
        return cls(
            http_timeout=float(os.getenv("API_RECON_HTTP_TIMEOUT", "30")),
            user_agent=os.getenv("API_RECON_USER_AGENT", f"api-recon/{VERSION}"),
            output_format=output_format,
        )


app_config = AppConfig.from_env()
