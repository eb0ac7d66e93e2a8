"""Lending engine configuration"""

from dataclasses import dataclass, fields
from typing import Any, Mapping

from .constants import (
    BPS,
    DEFAULT_APR,
    DEFAULT_APR_UPDATE_COOLDOWN,
    DEFAULT_COLLATERAL_DECIMALS,
    DEFAULT_INITIAL_PRICE,
    DEFAULT_LIQUIDATION_BONUS,
    DEFAULT_LIQUIDATION_THRESHOLD,
    DEFAULT_LTV,
    DEFAULT_MAX_APR_CHANGE,
    DEFAULT_MAX_PRICE_CHANGE,
    DEFAULT_STABLE_DECIMALS,
    LP_SHARE_DECIMALS,
    MAX_APR,
    MAX_LIQUIDATION_BONUS,
)
from .errors import ValidationError


@dataclass
class LendingConfig:
    """
    Deployment parameters of a lending pool.

    The risk parameters here are only the initial values; once the pool is
    running they change through the admin setters, which apply the limits
    below.
    """
    stable_decimals: int = DEFAULT_STABLE_DECIMALS
    collateral_decimals: int = DEFAULT_COLLATERAL_DECIMALS
    initial_price: int = DEFAULT_INITIAL_PRICE
    ltv: int = DEFAULT_LTV
    liquidation_threshold: int = DEFAULT_LIQUIDATION_THRESHOLD
    liquidation_bonus: int = DEFAULT_LIQUIDATION_BONUS
    apr: int = DEFAULT_APR
    max_price_change_bps: int = DEFAULT_MAX_PRICE_CHANGE
    max_apr_change_bps: int = DEFAULT_MAX_APR_CHANGE
    apr_update_cooldown: int = DEFAULT_APR_UPDATE_COOLDOWN
    max_apr: int = MAX_APR
    max_liquidation_bonus: int = MAX_LIQUIDATION_BONUS

    def __post_init__(self):
        self.validate()

    @property
    def collateral_scale(self) -> int:
        """Native units in one whole collateral token."""
        return 10**self.collateral_decimals

    @property
    def stable_scale(self) -> int:
        """Native units in one whole stable token."""
        return 10**self.stable_decimals

    def validate(self) -> None:
        """
        Checks that the configuration describes a usable pool.

        Raises:
            ValidationError: If any field is out of range
        """
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValidationError(f"{f.name} must be an integer, got {value!r}")
            if value < 0:
                raise ValidationError(f"{f.name} must not be negative, got {value}")

        if self.stable_decimals > LP_SHARE_DECIMALS:
            raise ValidationError(f"stable_decimals cannot exceed {LP_SHARE_DECIMALS}")
        if self.initial_price <= 0:
            raise ValidationError("initial_price must be greater than zero")
        if not 0 < self.ltv < self.liquidation_threshold <= BPS:
            raise ValidationError(
                f"Require 0 < ltv < liquidation_threshold <= {BPS}, "
                f"got ltv={self.ltv} liquidation_threshold={self.liquidation_threshold}"
            )
        if self.max_liquidation_bonus > BPS:
            raise ValidationError(f"max_liquidation_bonus cannot exceed {BPS}")
        if self.liquidation_bonus > self.max_liquidation_bonus:
            raise ValidationError(
                f"liquidation_bonus cannot exceed {self.max_liquidation_bonus}"
            )
        if self.apr > self.max_apr:
            raise ValidationError(f"apr cannot exceed {self.max_apr}")
        if self.max_price_change_bps == 0 or self.max_price_change_bps >= BPS:
            raise ValidationError(f"max_price_change_bps must be between 1 and {BPS - 1}")

    @classmethod
    def from_dict(cls, mapping: Mapping[str, Any]) -> "LendingConfig":
        """
        Builds a config from a plain mapping, e.g. a parsed JSON/TOML table.

        Raises:
            ValidationError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ValidationError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**dict(mapping))
