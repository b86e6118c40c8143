"""Configuration management for promptdesk."""

from pathlib import Path
from typing import List, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator


DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "promptdesk"


class ServerConfig(BaseModel):
    host: str = "localhost"
    port: int = 5010

    @field_validator('port')
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("port must be between 1 and 65535")
        return v


class FilesConfig(BaseModel):
    result_limit: int = 20
    static_excludes: List[str] = Field(
        default_factory=lambda: [".git/**", "node_modules/**"]
    )


class RelayConfig(BaseModel):
    mount_prefix: str = "/proxy"
    chunk_size: int = 64 * 1024

    @field_validator('mount_prefix')
    @classmethod
    def validate_mount_prefix(cls, v: str) -> str:
        if not v.startswith("/") or v == "/":
            raise ValueError("mount_prefix must start with '/' and name a path")
        return v.rstrip("/")


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_level: str = "DEBUG"
    log_dir: Optional[Path] = None
    rotation: str = "1 day"
    retention: str = "7 days"


class Config(BaseModel):
    """Main configuration for the promptdesk server."""

    data_dir: Path = DEFAULT_DATA_DIR
    server: ServerConfig = Field(default_factory=ServerConfig)
    files: FilesConfig = Field(default_factory=FilesConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('data_dir')
    @classmethod
    def validate_data_dir(cls, v: Path) -> Path:
        if isinstance(v, str):
            v = Path(v)
        v = v.expanduser().resolve()
        if not v.exists():
            logger.info(f"Data directory does not exist, will create: {v}")
            v.mkdir(parents=True, exist_ok=True)
        return v

    def override_port(self, port: int) -> None:
        """Replace the listening port, validating it like a loaded value."""
        self.server = ServerConfig(host=self.server.host, port=port)

    @property
    def data_file(self) -> Path:
        return self.data_dir / "data.json"

    @property
    def log_dir(self) -> Path:
        return self.logging.log_dir or self.data_dir / "logs"

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file."""
        if config_path is None:
            # Try default locations
            candidates = [
                Path("promptdesk.yaml"),
                Path.home() / ".config" / "promptdesk" / "config.yaml",
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                logger.info("No config file found, using defaults")
                return cls()
        elif not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)
