"""
Configuration loading for the FIX terminal client.

The configuration file is YAML with a single "fix" section:

    fix:
      version: FIX_4_2
      sender-comp-id: initiator
      target-comp-id: acceptor
      heart-bt-int: 30
      address: 127.0.0.1
      port: 4000
"""

import logging
import socket
from pathlib import Path
from typing import Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError
from .protocol import FIXConfig, FIXVersion


logger = logging.getLogger(__name__)

MAX_FIELD_COUNT = 1024
FIELD_CAPACITY = 1024
RX_BUFFER_CAPACITY = 1024 * 1024
TX_BUFFER_CAPACITY = 1024 * 1024


class FIXSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    version: FIXVersion
    sender_comp_id: str = Field(alias="sender-comp-id", min_length=1)
    target_comp_id: str = Field(alias="target-comp-id", min_length=1)
    heart_bt_int: int = Field(alias="heart-bt-int", ge=0)
    address: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)

    @field_validator("version", mode="before")
    @classmethod
    def _version_by_name(cls, value):
        # Accept the enum name ("FIX_4_2") as well as the BeginString
        if isinstance(value, str) and value in FIXVersion.__members__:
            return FIXVersion[value]
        return value


class Settings(BaseModel):
    """Root configuration for the terminal client."""

    model_config = ConfigDict(extra="ignore")

    fix: FIXSettings

    def to_fix_config(self) -> FIXConfig:
        return FIXConfig(
            version=self.fix.version,
            sender_comp_id=self.fix.sender_comp_id,
            target_comp_id=self.fix.target_comp_id,
            heart_bt_int=self.fix.heart_bt_int,
            max_field_count=MAX_FIELD_COUNT,
            field_capacity=FIELD_CAPACITY,
            rx_buffer_capacity=RX_BUFFER_CAPACITY,
            tx_buffer_capacity=TX_BUFFER_CAPACITY,
        )

    def resolve_address(self) -> Tuple[str, int]:
        """
        Resolve the configured host name.

        Raises:
            ConfigurationError: If the host name cannot be resolved
        """
        try:
            host = socket.gethostbyname(self.fix.address)
        except (socket.gaierror, UnicodeError) as e:
            raise ConfigurationError(f"fix.address: Unknown host: {self.fix.address} ({e})")
        return host, self.fix.port


def load_settings(config_path: Union[Path, str]) -> Settings:
    """
    Load settings from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigurationError: If the file is not valid YAML or misses settings
    """
    path = Path(config_path)

    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"{path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: Expected a mapping at the top level")

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"{path}: {_describe(e)}")

    logger.info(f"Loaded configuration from {path}")
    return settings


def _describe(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        problems.append(f"{location}: {item['msg']}")
    return "; ".join(problems)
