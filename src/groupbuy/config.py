"""Runtime settings for the groupbuy service, read from the environment."""

import os
from dataclasses import dataclass


def _optional_float(value: str | None) -> float | None:
    if value is None or value.strip() == "":
        return None
    return float(value)


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    default_jurisdiction: str = "CA"
    pool_ttl_hours: float | None = None
    pool_join_retries: int = 3
    tax_adapter: str = "static"
    notification_adapter: str = "log"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        return cls(
            environment=os.getenv("PROTEAN_ENV", "development"),
            default_jurisdiction=os.getenv("GROUPBUY_DEFAULT_JURISDICTION", "CA").upper(),
            pool_ttl_hours=_optional_float(os.getenv("GROUPBUY_POOL_TTL_HOURS")),
            pool_join_retries=int(os.getenv("GROUPBUY_POOL_JOIN_RETRIES", "3")),
            tax_adapter=os.getenv("TAX_ADAPTER", "static"),
            notification_adapter=os.getenv("NOTIFICATION_ADAPTER", "log"),
        )
