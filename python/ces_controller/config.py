"""
Controller configuration.

Settings come from environment variables, with an optional .env file for
local runs.
"""
import json
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Union

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

env_path = Path(".env")
if env_path.exists():
    load_dotenv(dotenv_path=env_path)


class Settings(BaseSettings):
    """Controller settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # BIG-IP connection
    SERVER: str = Field(default="127.0.0.1", description="BIG-IP management address")
    REMOTE_USER: str = Field(default="admin")
    REMOTE_PASSWORD: str = Field(default="")
    INSECURE: bool = Field(default=False, description="Skip TLS verification")
    REQUEST_TIMEOUT: float = Field(default=60.0)
    SAVE_CONFIG: bool = Field(default=False, description="Persist config to disk after each apply")

    # Webhook server
    LISTEN_PORT: int = Field(default=80)
    RESYNC_SECONDS: int = Field(default=120)

    # Tenants
    DEFAULT_PARTITION: str = Field(default="Common")
    DEFAULT_APPLICATION: str = Field(default="Shared")
    SNAT_APPLICATION: str = Field(default="k8s_snat")
    TENANTS: Union[str, Dict[str, Dict]] = Field(
        default="{}",
        description='Partition table, e.g. {"tenant-a": {"namespaces": ["ns1"], "application": "app"}}',
    )

    # Supported bandwidth iRules
    IRULES: Union[str, List[str]] = Field(
        default='["bwc_1mbps_irule", "bwc_10mbps_irule", "bwc_100mbps_irule"]'
    )

    # Work queues
    WORKERS: int = Field(default=2)
    RETRY_BASE_DELAY: float = Field(default=0.005)
    RETRY_MAX_DELAY: float = Field(default=1000.0)
    QUEUE_QPS: float = Field(default=10.0)
    QUEUE_BURST: int = Field(default=100)

    # SNAT synthesis
    SNAT_PREFIX: str = Field(default="k8s_snat")
    DEFAULT_PRIORITY: int = Field(default=1000)
    SNAT_PORT_RANGE: str = Field(default="10000-50000")
    EGRESS_PREFIX: str = Field(default="k8s_egress")

    # License
    LICENSE: Optional[str] = Field(default=None, description="Encrypted license token")
    LICENSE_KEY: Optional[str] = Field(default=None)

    LOG_LEVEL: str = Field(default="INFO")

    @field_validator("TENANTS")
    @classmethod
    def parse_tenants(cls, v):
        if isinstance(v, str):
            return json.loads(v or "{}")
        return v

    @field_validator("IRULES")
    @classmethod
    def parse_irules(cls, v):
        """Parse IRULES from a JSON list or a comma separated string."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [rule.strip() for rule in v.split(",") if rule.strip()]
        return v

    def license_configured(self) -> bool:
        return bool(self.LICENSE and self.LICENSE_KEY)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
