"""Uplift engine: combines regional funnels and the chargeback model into totals."""

from __future__ import annotations

from statistics import mean
from typing import Literal, TypedDict

from value_assessment.chargebacks import (
    ChargebackCategory,
    ChargebackSavings,
    DisputeWaterfall,
    compute_chargeback_savings,
    compute_dispute_waterfalls,
)
from value_assessment.funnel import (
    DEFAULT_FUNNEL_CONFIG,
    FunnelConfig,
    FunnelStages,
    simulate_current_funnel,
    simulate_future_funnel,
)
from value_assessment.models import InputProfile
from value_assessment.regions import RegionKey

DriverKey = Literal["gmv_uplift", "chargeback_savings"]

DRIVER_KEYS: tuple[DriverKey, DriverKey] = ("gmv_uplift", "chargeback_savings")

DRIVER_LABELS: dict[DriverKey, str] = {
    "gmv_uplift": "GMV Uplift",
    "chargeback_savings": "Chargeback Savings",
}

DRIVER_CATEGORIES: dict[DriverKey, str] = {
    "gmv_uplift": "Business Growth",
    "chargeback_savings": "Risk Avoidance",
}


class RegionAssessment(TypedDict):
    region: RegionKey
    gmv_attempts: float
    gross_attempts_count: float | None
    average_order_value: float | None
    gross_margin_percent: float
    fraud_check_timing: str
    current: FunnelStages
    future: FunnelStages
    gmv_uplift: float
    complete_rate_improvement: float


class DriverValue(TypedDict):
    driver: DriverKey
    label: str
    category: str
    value: float
    included: bool


class AggregateResult(TypedDict):
    total_gmv_attempts: float
    total_gmv_uplift: float
    gmv_uplift_percent: float
    chargeback_savings: float
    total_value: float
    margin_enabled: bool
    average_margin_percent: float
    monthly_run_rate: float
    drivers: dict[DriverKey, DriverValue]
    value_distribution: dict[str, float]


class AssessmentResult(TypedDict):
    funnel_config: str
    customer_name: str | None
    regions: dict[RegionKey, RegionAssessment]
    chargebacks: ChargebackSavings
    dispute_waterfalls: dict[ChargebackCategory, DisputeWaterfall]
    aggregate: AggregateResult


def assess_region(profile: InputProfile, region_key: RegionKey, config: FunnelConfig = DEFAULT_FUNNEL_CONFIG) -> RegionAssessment:
    """Run current and future funnels for one present region.

    Raises:
        KeyError: If the region is absent or has no GMV.
    """
    region = profile.regions.get(region_key)
    if region is None or not region.is_present:
        raise KeyError(f"Region {region_key} has no GMV and is excluded from the assessment")

    current = simulate_current_funnel(region, config)
    future = simulate_future_funnel(region, profile.vendor, config)

    return {
        "region": region_key,
        "gmv_attempts": region.annual_gmv_attempts,
        "gross_attempts_count": region.gross_attempts_count,
        "average_order_value": region.average_order_value,
        "gross_margin_percent": region.gross_margin_percent,
        "fraud_check_timing": region.fraud_check_timing,
        "current": current,
        "future": future,
        "gmv_uplift": future["completed"] - current["completed"],
        "complete_rate_improvement": future["complete_rate"] - current["complete_rate"],
    }


def _driver_values(profile: InputProfile, gmv_uplift: float, chargeback_savings: float) -> dict[DriverKey, DriverValue]:
    values: dict[DriverKey, float] = {"gmv_uplift": gmv_uplift, "chargeback_savings": chargeback_savings}
    included: dict[DriverKey, bool] = {
        "gmv_uplift": profile.drivers.gmv_uplift,
        "chargeback_savings": profile.drivers.chargeback_savings,
    }
    return {
        key: {
            "driver": key,
            "label": DRIVER_LABELS[key],
            "category": DRIVER_CATEGORIES[key],
            "value": values[key],
            "included": included[key],
        }
        for key in DRIVER_KEYS
    }


def _aggregate(
    profile: InputProfile,
    regions: dict[RegionKey, RegionAssessment],
    chargebacks: ChargebackSavings,
) -> AggregateResult:
    total_gmv = sum(item["gmv_attempts"] for item in regions.values())
    total_uplift = sum(item["gmv_uplift"] for item in regions.values())
    savings = chargebacks["savings"]

    drivers = _driver_values(profile, total_uplift, savings)
    total_value = sum(driver["value"] for driver in drivers.values() if driver["included"])

    average_margin = mean(item["gross_margin_percent"] for item in regions.values()) if regions else 0.0
    run_rate_base = total_value * average_margin / 100.0 if profile.margin_enabled else total_value

    return {
        "total_gmv_attempts": total_gmv,
        "total_gmv_uplift": total_uplift,
        "gmv_uplift_percent": (total_uplift / total_gmv * 100.0) if total_gmv > 0 else 0.0,
        "chargeback_savings": savings,
        "total_value": total_value,
        "margin_enabled": profile.margin_enabled,
        "average_margin_percent": average_margin,
        "monthly_run_rate": run_rate_base / 12.0,
        "drivers": drivers,
        "value_distribution": {
            "business_growth": total_uplift,
            "risk_avoidance": savings,
        },
    }


def compute_assessment(profile: InputProfile, config: FunnelConfig = DEFAULT_FUNNEL_CONFIG) -> AssessmentResult:
    """Compute the full value assessment for an input profile.

    Pure function: every call re-derives all figures from the profile.
    Regions without GMV are skipped entirely.
    """
    regions: dict[RegionKey, RegionAssessment] = {
        key: assess_region(profile, key, config) for key, _ in profile.present_regions()
    }
    total_gmv = sum(item["gmv_attempts"] for item in regions.values())

    chargebacks = compute_chargeback_savings(total_gmv, profile.chargebacks, profile.vendor)
    waterfalls = compute_dispute_waterfalls(total_gmv, profile.chargebacks, profile.vendor)

    return {
        "funnel_config": config.name,
        "customer_name": profile.customer.customer_name,
        "regions": regions,
        "chargebacks": chargebacks,
        "dispute_waterfalls": waterfalls,
        "aggregate": _aggregate(profile, regions, chargebacks),
    }
