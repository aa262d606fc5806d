import os
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    monthly_interest_rate: Decimal = Field(default=Decimal("0.05"), ge=0)
    eligibility_threshold: Decimal = Field(default=Decimal("100000"), ge=0)
    benefit_rate: Decimal = Field(default=Decimal("0.1"), ge=0)
    scheduler_enabled: bool = True
    scheduler_tick_seconds: float = Field(default=30, gt=0, le=60)
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "monthly_interest_rate": os.getenv("PENSION_MONTHLY_INTEREST_RATE"),
            "eligibility_threshold": os.getenv("PENSION_ELIGIBILITY_THRESHOLD"),
            "benefit_rate": os.getenv("PENSION_BENEFIT_RATE"),
            "scheduler_tick_seconds": os.getenv("PENSION_SCHEDULER_TICK_SECONDS"),
            "log_level": os.getenv("PENSION_LOG_LEVEL"),
        }
        settings = {k: v for k, v in values.items() if v is not None}
        settings["scheduler_enabled"] = _env_bool(os.getenv("PENSION_SCHEDULER_ENABLED"), True)
        settings["log_json"] = _env_bool(os.getenv("PENSION_LOG_JSON"), False)
        return cls(**settings)
