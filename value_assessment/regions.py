"""Region keys and per-region default metrics for value assessments."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

RegionKey = Literal["AMER", "EMEA", "APAC"]

REGION_ORDER: tuple[RegionKey, RegionKey, RegionKey] = ("AMER", "EMEA", "APAC")


@dataclass(frozen=True)
class RegionDefaults:
    """Default current-state metrics applied when a region field is missing."""

    issuing_bank_decline_rate_percent: float = 7.0
    gross_margin_percent: float = 50.0
    pre_auth_fraud_approval_rate_percent: float = 95.0
    post_auth_fraud_approval_rate_percent: float = 98.5
    three_ds_challenge_rate_percent: float = 0.0
    three_ds_abandonment_rate_percent: float = 5.0
    manual_review_rate_percent: float = 0.0


REGION_DEFAULTS: dict[RegionKey, RegionDefaults] = {
    "AMER": RegionDefaults(),
    "EMEA": RegionDefaults(issuing_bank_decline_rate_percent=5.0),
    "APAC": RegionDefaults(),
}


def get_region_defaults(region: str) -> RegionDefaults:
    """Return defaults for a region key (case-insensitive).

    Raises:
        KeyError: If the region is not one of AMER, EMEA, APAC.
    """
    key = region.strip().upper()
    if key not in REGION_DEFAULTS:
        raise KeyError(f"Unknown region: {region}")
    return REGION_DEFAULTS[key]  # type: ignore[index]
