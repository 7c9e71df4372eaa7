"""Per-region payment funnel simulation for current and vendor states.

The funnel is evaluated in a fixed order, each stage acting on the previous
stage's survivors:

    fraud decisioning -> 3DS challenge/abandonment -> bank authorization -> manual review

Both states run through the same `_run_funnel`; they differ only in the
stage rates fed to it. The full stage record is returned so that breakdown
views can read the figures instead of recomputing them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict

from value_assessment.models import AbsoluteAdjustment, RateAdjustment, RegionInput, VendorKPIs


@dataclass(frozen=True)
class FunnelConfig:
    name: str = "current"
    current_review_loss_percent: float = 3.0
    future_review_loss_percent: float = 2.0
    bank_approval_ceiling_percent: float = 99.0
    include_three_ds: bool = True
    include_manual_review: bool = True


DEFAULT_FUNNEL_CONFIG = FunnelConfig()

# Earlier calculator revisions modelled only fraud approval x bank approval.
LEGACY_TWO_STAGE_CONFIG = FunnelConfig(
    name="legacy_two_stage",
    include_three_ds=False,
    include_manual_review=False,
)

FUNNEL_CONFIGS: dict[str, FunnelConfig] = {
    DEFAULT_FUNNEL_CONFIG.name: DEFAULT_FUNNEL_CONFIG,
    LEGACY_TWO_STAGE_CONFIG.name: LEGACY_TWO_STAGE_CONFIG,
}


def get_funnel_config(name: str) -> FunnelConfig:
    """Look up a named funnel formula version.

    Raises:
        KeyError: If no config is registered under `name`.
    """
    if name not in FUNNEL_CONFIGS:
        raise KeyError(f"Unknown funnel config: {name}")
    return FUNNEL_CONFIGS[name]


class FunnelStages(TypedDict):
    """Every intermediate value of one funnel run. Rates are fractions (0-1)."""

    gmv_attempts: float
    fraud_approval_rate: float
    fraud_approved: float
    alternative_payment_share: float
    three_ds_challenge_rate: float
    three_ds_abandonment_rate: float
    card_volume: float
    three_ds_exempt: float
    three_ds_challenged: float
    three_ds_abandoned: float
    three_ds_survivors: float
    to_auth: float
    bank_decline_rate: float
    bank_approval_rate: float
    bank_approved: float
    manual_review_rate: float
    manual_review_loss_rate: float
    manual_reviewed: float
    manual_review_lost: float
    completed: float
    complete_rate: float


@dataclass(frozen=True)
class StageRates:
    """Fractional rates for one funnel run."""

    fraud_approval: float
    alternative_payment_share: float
    three_ds_challenge: float
    three_ds_abandonment: float
    bank_decline: float
    bank_approval: float
    manual_review: float
    manual_review_loss: float


def resolve_rate(adjustment: RateAdjustment, current_percent: float) -> float:
    """Resolve a dual-mode vendor adjustment against a region's current rate.

    Relative adjustments reduce the current rate by `percent` and are floored
    at zero; absolute adjustments are the future rate itself. Both operate and
    return in percent units.
    """
    if isinstance(adjustment, AbsoluteAdjustment):
        return adjustment.value
    return max(0.0, current_percent * (1.0 - adjustment.percent / 100.0))


def current_stage_rates(region: RegionInput, config: FunnelConfig = DEFAULT_FUNNEL_CONFIG) -> StageRates:
    """Stage rates describing the merchant's process today."""
    bank_decline = region.issuing_bank_decline_rate_percent / 100.0
    return StageRates(
        fraud_approval=region.active_fraud_approval_rate_percent / 100.0,
        alternative_payment_share=region.alternative_payment_methods_percent / 100.0,
        three_ds_challenge=(region.three_ds_challenge_rate_percent / 100.0) if config.include_three_ds else 0.0,
        three_ds_abandonment=(region.three_ds_abandonment_rate_percent / 100.0) if config.include_three_ds else 0.0,
        bank_decline=bank_decline,
        bank_approval=1.0 - bank_decline,
        manual_review=(region.manual_review_rate_percent / 100.0) if config.include_manual_review else 0.0,
        manual_review_loss=config.current_review_loss_percent / 100.0,
    )


def future_stage_rates(
    region: RegionInput,
    vendor: VendorKPIs,
    config: FunnelConfig = DEFAULT_FUNNEL_CONFIG,
) -> StageRates:
    """Stage rates after adopting the vendor, per the vendor KPI assumptions."""
    future_decline_percent = region.issuing_bank_decline_rate_percent * (
        1.0 - vendor.bank_decline_improvement_percent / 100.0
    )
    bank_decline = future_decline_percent / 100.0
    bank_approval = min(config.bank_approval_ceiling_percent / 100.0, 1.0 - bank_decline)

    challenge_percent = resolve_rate(vendor.three_ds_challenge, region.three_ds_challenge_rate_percent)
    abandonment_percent = resolve_rate(vendor.three_ds_abandonment, region.three_ds_abandonment_rate_percent)
    review_percent = resolve_rate(vendor.manual_review, region.manual_review_rate_percent)

    return StageRates(
        fraud_approval=vendor.fraud_approval_rate_percent / 100.0,
        alternative_payment_share=region.alternative_payment_methods_percent / 100.0,
        three_ds_challenge=(challenge_percent / 100.0) if config.include_three_ds else 0.0,
        three_ds_abandonment=(abandonment_percent / 100.0) if config.include_three_ds else 0.0,
        bank_decline=bank_decline,
        bank_approval=bank_approval,
        manual_review=(review_percent / 100.0) if config.include_manual_review else 0.0,
        manual_review_loss=config.future_review_loss_percent / 100.0,
    )


def _run_funnel(gmv_attempts: float, rates: StageRates) -> FunnelStages:
    fraud_approved = gmv_attempts * rates.fraud_approval

    # Alternative payment methods skip 3DS entirely and rejoin with the exempt card volume.
    card_volume = fraud_approved * (1.0 - rates.alternative_payment_share)
    challenged = card_volume * rates.three_ds_challenge
    abandoned = challenged * rates.three_ds_abandonment
    survivors = challenged - abandoned
    exempt = fraud_approved - challenged
    to_auth = exempt + survivors

    bank_approved = to_auth * rates.bank_approval

    reviewed = bank_approved * rates.manual_review
    review_lost = reviewed * rates.manual_review_loss
    completed = bank_approved - review_lost

    complete_rate = (completed / gmv_attempts) if gmv_attempts > 0 else 0.0

    return {
        "gmv_attempts": gmv_attempts,
        "fraud_approval_rate": rates.fraud_approval,
        "fraud_approved": fraud_approved,
        "alternative_payment_share": rates.alternative_payment_share,
        "three_ds_challenge_rate": rates.three_ds_challenge,
        "three_ds_abandonment_rate": rates.three_ds_abandonment,
        "card_volume": card_volume,
        "three_ds_exempt": exempt,
        "three_ds_challenged": challenged,
        "three_ds_abandoned": abandoned,
        "three_ds_survivors": survivors,
        "to_auth": to_auth,
        "bank_decline_rate": rates.bank_decline,
        "bank_approval_rate": rates.bank_approval,
        "bank_approved": bank_approved,
        "manual_review_rate": rates.manual_review,
        "manual_review_loss_rate": rates.manual_review_loss,
        "manual_reviewed": reviewed,
        "manual_review_lost": review_lost,
        "completed": completed,
        "complete_rate": max(0.0, min(1.0, complete_rate)),
    }


def simulate_current_funnel(region: RegionInput, config: FunnelConfig = DEFAULT_FUNNEL_CONFIG) -> FunnelStages:
    """Simulate the region's funnel under its current fraud process."""
    return _run_funnel(region.annual_gmv_attempts, current_stage_rates(region, config))


def simulate_future_funnel(
    region: RegionInput,
    vendor: VendorKPIs,
    config: FunnelConfig = DEFAULT_FUNNEL_CONFIG,
) -> FunnelStages:
    """Simulate the region's funnel with the vendor's assumed performance."""
    return _run_funnel(region.annual_gmv_attempts, future_stage_rates(region, vendor, config))
