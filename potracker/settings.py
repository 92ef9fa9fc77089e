import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # API Configuration
    api_base_url: str = Field(default="http://localhost:3000/api", alias="API_BASE_URL")
    api_timeout: float = Field(default=30.0, alias="API_TIMEOUT")
    api_token: str | None = Field(default=None, alias="API_TOKEN")

    # Cache Configuration
    cache_ttl_seconds: float = Field(default=300.0, alias="CACHE_TTL_SECONDS")
    cache_sweep_interval_seconds: float = Field(
        default=30.0, alias="CACHE_SWEEP_INTERVAL_SECONDS"
    )

    # Retry Configuration: quick | standard | aggressive
    retry_preset: str = Field(default="standard", alias="RETRY_PRESET")

    client_debug: bool = Field(default=False, alias="CLIENT_DEBUG")


def load_settings() -> Settings:
    """Read settings from the environment (after .env has been loaded)."""
    return Settings.model_validate(dict(os.environ))


global_settings = load_settings()
