"""
Auction configuration parameters for openbid.

Defines timing, increment and fee rules, plus where node data lives.
Values can be overridden from a JSON file and OPENBID_* environment
variables (a local .env file is honoured).
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, Field, ValidationError

from openbid.utils.logger import get_logger

logger = get_logger("config")

ENV_PREFIX = "OPENBID_"


@dataclass(frozen=True)
class AuctionConfig:
    """Auction-wide configuration parameters"""

    # Timing (seconds)
    duration: int = 7 * 24 * 60 * 60  # Auction runs for 7 days
    extension_window: int = 10 * 60  # Late bids push the deadline by 10 minutes

    # Economics (integer percentages)
    min_increment_percent: int = 5  # Each bid must beat the winner by 5%
    settlement_fee_percent: int = 2  # Kept from losing bids at settlement

    # Paths
    data_dir: Path = Path("data")
    log_dir: Path = Path("logs")

    def __post_init__(self):
        if self.duration <= 0:
            raise ValueError(f"duration must be positive, got {self.duration}")
        if self.extension_window < 0:
            raise ValueError(f"extension_window must be >= 0, got {self.extension_window}")
        if not 0 <= self.settlement_fee_percent <= 100:
            raise ValueError(f"settlement_fee_percent out of range: {self.settlement_fee_percent}")
        if self.min_increment_percent < 0:
            raise ValueError(f"min_increment_percent must be >= 0, got {self.min_increment_percent}")

    def increment_floor(self, winning_amount: int) -> int:
        """
        Highest amount that still does NOT beat the current winner.

        A bid is accepted only when strictly greater than this value.
        Uses truncating integer division: 100 -> 105, 0 -> 0.
        """
        return winning_amount * (100 + self.min_increment_percent) // 100

    def minimum_bid_above(self, winning_amount: int) -> int:
        """Smallest acceptable bid given the current winning amount."""
        return self.increment_floor(winning_amount) + 1

    def settlement_payout(self, balance: int) -> int:
        """Amount returned to a losing bidder at settlement (fee deducted)."""
        return balance * (100 - self.settlement_fee_percent) // 100

    def ensure_dirs(self) -> None:
        """Create data and log directories"""
        self.data_dir.mkdir(exist_ok=True, parents=True)
        self.log_dir.mkdir(exist_ok=True, parents=True)


class ConfigFile(BaseModel):
    """Schema for config files and environment overrides."""

    duration: int = Field(default=AuctionConfig.duration, gt=0)
    extension_window: int = Field(default=AuctionConfig.extension_window, ge=0)
    min_increment_percent: int = Field(default=AuctionConfig.min_increment_percent, ge=0)
    settlement_fee_percent: int = Field(default=AuctionConfig.settlement_fee_percent, ge=0, le=100)
    data_dir: Path = AuctionConfig.data_dir
    log_dir: Path = AuctionConfig.log_dir

    model_config = {"extra": "forbid"}


# Global config instance (can be overridden)
config = AuctionConfig()


def _env_overrides(environ) -> dict:
    """Collect OPENBID_* variables that name a config field."""
    overrides = {}
    for name in ConfigFile.model_fields:
        value = environ.get(ENV_PREFIX + name.upper())
        if value is not None:
            overrides[name] = value
    return overrides


def load_config(config_path: Optional[str] = None) -> AuctionConfig:
    """
    Load configuration from file and environment, or use defaults.

    Precedence (highest first): OPENBID_* environment variables, a .env
    file found from the working directory, the JSON file at config_path,
    built-in defaults.

    Args:
        config_path: Optional path to a JSON config file

    Returns:
        AuctionConfig instance

    Raises:
        ValueError: If the file or the overrides hold invalid values
    """
    values = {}
    if config_path:
        path = Path(config_path)
        values.update(json.loads(path.read_text()))
        logger.debug(f"Loaded config file {path}")

    dotenv_path = find_dotenv(usecwd=True)
    if dotenv_path:
        values.update(_env_overrides(dotenv_values(dotenv_path)))
        logger.debug(f"Loaded overrides from {dotenv_path}")

    values.update(_env_overrides(os.environ))

    try:
        parsed = ConfigFile(**values)
    except ValidationError as e:
        raise ValueError(f"Invalid auction configuration: {e}") from e

    return AuctionConfig(**parsed.model_dump())
