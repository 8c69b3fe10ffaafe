"""Engine settings, loaded from GRAPHAGENT_* environment variables and a .env file"""

from typing import Any, Literal, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "GRAPHAGENT_"


class AgentGraphSettings(BaseSettings):
    """
    Priority, highest first: keyword overrides, environment variables,
    the .env file, field defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX, env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    log_level: str = Field(default="INFO", description="Root log level")
    log_format: Literal["json", "console"] = Field(default="json")
    service_name: str = Field(default="graphagent")
    environment: str = Field(default="development")
    max_agent_iterations: int = Field(default=50, gt=0, description="Node executions allowed per run")
    auto_checkpoint: bool = Field(default=False, description="Checkpoint before every node")

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None, **overrides: Any) -> "AgentGraphSettings":
        """Load settings, reading dotenv_path instead of ./.env when given"""

        if dotenv_path is not None:
            return cls(_env_file=dotenv_path, **overrides)
        return cls(**overrides)
