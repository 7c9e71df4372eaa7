"""Input data models for fraud value assessments.

Every numeric field is clamped at the model boundary instead of rejected:
currency and counts are floored at zero, percentages are held to [0, 100],
and missing, NaN, infinite or unparseable values fall back to the field
default. Values therefore never reach the funnel math in an invalid state.
"""

from __future__ import annotations

import math
from dataclasses import asdict
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from value_assessment.regions import REGION_DEFAULTS, REGION_ORDER, RegionKey

FraudCheckTiming = Literal["pre-auth", "post-auth"]

_TIMING_ALIASES: dict[str, FraudCheckTiming] = {
    "pre-auth": "pre-auth",
    "preauth": "pre-auth",
    "pre": "pre-auth",
    "pre-authorization": "pre-auth",
    "before": "pre-auth",
    "post-auth": "post-auth",
    "postauth": "post-auth",
    "post": "post-auth",
    "post-authorization": "post-auth",
    "after": "post-auth",
}


def coerce_number(value: Any) -> float | None:
    """Return a finite float for numeric-looking input, otherwise None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("$", "").replace("%", "")
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    elif isinstance(value, (int, float)):
        number = float(value)
    else:
        return None

    if not math.isfinite(number):
        return None
    return number


def coerce_bool(value: Any) -> bool | None:
    """Interpret loose boolean input (true/false, yes/no, 1/0)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "y", "1", "on"}:
            return True
        if lowered in {"false", "no", "n", "0", "off"}:
            return False
    return None


def normalize_fraud_check_timing(value: Any) -> FraudCheckTiming | None:
    """Map loose timing wording ("before", "post", "Pre-Auth") to a timing, or None."""
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower().replace("_", "-").replace(" ", "-")
    return _TIMING_ALIASES.get(normalized)


def clamp_percent(value: Any, default: float) -> float:
    number = coerce_number(value)
    if number is None:
        return default
    return max(0.0, min(100.0, number))


def clamp_non_negative(value: Any, default: float | None) -> float | None:
    number = coerce_number(value)
    if number is None:
        return default
    return max(0.0, number)


def _field_default(model: type[BaseModel], field_name: str) -> Any:
    return model.model_fields[field_name].get_default(call_default_factory=True)


class RelativeAdjustment(BaseModel):
    """Future rate expressed as a relative reduction of the current rate."""

    model_config = ConfigDict(extra="forbid")

    mode: Literal["relative"] = "relative"
    percent: float = 0.0

    @field_validator("percent", mode="before")
    @classmethod
    def clamp_percent_value(cls, value: Any) -> float:
        return clamp_percent(value, 0.0)


class AbsoluteAdjustment(BaseModel):
    """Future rate given directly as the resulting absolute percentage."""

    model_config = ConfigDict(extra="forbid")

    mode: Literal["absolute"] = "absolute"
    value: float = 0.0

    @field_validator("value", mode="before")
    @classmethod
    def clamp_absolute_value(cls, value: Any) -> float:
        return clamp_percent(value, 0.0)


RateAdjustment = Annotated[Union[RelativeAdjustment, AbsoluteAdjustment], Field(discriminator="mode")]


def _adjustment_parts(adjustment: Any) -> tuple[str, float] | None:
    if isinstance(adjustment, RelativeAdjustment):
        return "relative", adjustment.percent
    if isinstance(adjustment, AbsoluteAdjustment):
        return "absolute", adjustment.value
    if isinstance(adjustment, dict):
        mode = str(adjustment.get("mode", "relative"))
        key = "value" if mode == "absolute" else "percent"
        return mode, clamp_percent(adjustment.get(key), 0.0)
    return None


class RegionInput(BaseModel):
    """Current-state transaction metrics for one region.

    Region-dependent defaults (bank decline 7% for AMER/APAC, 5% for EMEA)
    are resolved from `REGION_DEFAULTS` when the model is built.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    region: RegionKey = Field("AMER", description="Region this input belongs to.")
    annual_gmv_attempts: float = Field(
        0.0,
        description="Gross value of all transaction attempts in USD, before any filtering.",
    )
    gross_attempts_count: float | None = Field(
        None,
        description="Number of transaction attempts; only used to derive AOV for breakdown display.",
    )
    gross_margin_percent: float = 50.0
    fraud_check_timing: FraudCheckTiming = "pre-auth"
    pre_auth_fraud_approval_rate_percent: float = 95.0
    post_auth_fraud_approval_rate_percent: float = 98.5
    issuing_bank_decline_rate_percent: float = 7.0
    three_ds_challenge_rate_percent: float = 0.0
    three_ds_abandonment_rate_percent: float = 5.0
    manual_review_rate_percent: float = 0.0
    alternative_payment_methods_percent: float = Field(
        0.0,
        description="Share of fraud-approved volume paid with non-card methods; never routed through 3DS.",
    )

    @model_validator(mode="before")
    @classmethod
    def apply_region_defaults(cls, data: Any) -> Any:
        """Fill missing or invalid region-dependent fields from the region's defaults."""
        if not isinstance(data, dict):
            return data

        payload = dict(data)
        region = str(payload.get("region") or "AMER").strip().upper()
        if region not in REGION_DEFAULTS:
            raise ValueError(f"region must be one of {', '.join(REGION_ORDER)}")
        payload["region"] = region

        for name, default in asdict(REGION_DEFAULTS[region]).items():
            if coerce_number(payload.get(name)) is None:
                payload[name] = default
        return payload

    @field_validator("annual_gmv_attempts", mode="before")
    @classmethod
    def clamp_gmv(cls, value: Any) -> float:
        return clamp_non_negative(value, 0.0)

    @field_validator("gross_attempts_count", mode="before")
    @classmethod
    def clamp_attempts(cls, value: Any) -> float | None:
        return clamp_non_negative(value, None)

    @field_validator(
        "gross_margin_percent",
        "pre_auth_fraud_approval_rate_percent",
        "post_auth_fraud_approval_rate_percent",
        "issuing_bank_decline_rate_percent",
        "three_ds_challenge_rate_percent",
        "three_ds_abandonment_rate_percent",
        "manual_review_rate_percent",
        "alternative_payment_methods_percent",
        mode="before",
    )
    @classmethod
    def clamp_percent_fields(cls, value: Any, info: ValidationInfo) -> float:
        return clamp_percent(value, _field_default(cls, info.field_name))

    @field_validator("fraud_check_timing", mode="before")
    @classmethod
    def normalize_timing(cls, value: Any) -> str:
        if value is None:
            return "pre-auth"
        timing = normalize_fraud_check_timing(value)
        if timing is None:
            raise ValueError("fraud_check_timing must be 'pre-auth' or 'post-auth'")
        return timing

    @property
    def is_present(self) -> bool:
        return self.annual_gmv_attempts > 0

    @property
    def active_fraud_approval_rate_percent(self) -> float:
        if self.fraud_check_timing == "post-auth":
            return self.post_auth_fraud_approval_rate_percent
        return self.pre_auth_fraud_approval_rate_percent

    @property
    def average_order_value(self) -> float | None:
        """Average attempt value, or None when no attempt count is known."""
        if not self.gross_attempts_count:
            return None
        return self.annual_gmv_attempts / self.gross_attempts_count


class ChargebackInput(BaseModel):
    """Merchant chargeback rates (percent of GMV) and average chargeback values."""

    model_config = ConfigDict(extra="forbid")

    fraud_chargeback_rate_percent: float = 0.8
    fraud_chargeback_aov: float = 158.0
    service_chargeback_rate_percent: float = 0.0
    service_chargeback_aov: float = 158.0

    @field_validator("fraud_chargeback_rate_percent", "service_chargeback_rate_percent", mode="before")
    @classmethod
    def clamp_rates(cls, value: Any, info: ValidationInfo) -> float:
        return clamp_percent(value, _field_default(cls, info.field_name))

    @field_validator("fraud_chargeback_aov", "service_chargeback_aov", mode="before")
    @classmethod
    def clamp_aov(cls, value: Any, info: ValidationInfo) -> float:
        return clamp_non_negative(value, _field_default(cls, info.field_name))


_DUAL_MODE_FIELDS: dict[str, tuple[str, str]] = {
    "three_ds_challenge": ("three_ds_challenge_reduction_percent", "three_ds_challenge_is_absolute"),
    "three_ds_abandonment": ("three_ds_abandonment_improvement_percent", "three_ds_abandonment_is_absolute"),
    "manual_review": ("manual_review_reduction_percent", "manual_review_is_absolute"),
}


class VendorKPIs(BaseModel):
    """Assumed post-adoption performance, applied uniformly to every region."""

    model_config = ConfigDict(extra="forbid")

    fraud_approval_rate_percent: float = Field(
        99.0,
        description="Absolute future fraud approval rate; replaces each region's current rate.",
    )
    bank_decline_improvement_percent: float = Field(
        1.0,
        description="Relative reduction of each region's current issuing bank decline rate.",
    )
    chargeback_reduction_percent: float = 70.0
    three_ds_challenge: RateAdjustment = Field(default_factory=lambda: RelativeAdjustment(percent=30.0))
    three_ds_abandonment: RateAdjustment = Field(default_factory=lambda: RelativeAdjustment(percent=2.0))
    manual_review: RateAdjustment = Field(default_factory=lambda: RelativeAdjustment(percent=50.0))
    dispute_rate_percent: float = 95.0
    fraud_dispute_win_rate_percent: float = 25.2
    service_dispute_rate_percent: float = 95.0
    service_dispute_win_rate_percent: float = 45.0
    time_per_review_reduction_percent: float = Field(
        80.0,
        description="Reduction of analyst time per manual review; descriptive only, not part of the value math.",
    )

    @model_validator(mode="before")
    @classmethod
    def fold_dual_mode_flags(cls, data: Any) -> Any:
        """Fold `<name>_percent` + `<name>_is_absolute` pairs into a RateAdjustment."""
        if not isinstance(data, dict):
            return data

        payload = dict(data)
        for field_name, (value_key, flag_key) in _DUAL_MODE_FIELDS.items():
            if value_key not in payload and flag_key not in payload:
                continue

            raw_value = payload.pop(value_key, None)
            raw_flag = payload.pop(flag_key, None)
            existing = _adjustment_parts(payload.get(field_name)) or _adjustment_parts(_field_default(cls, field_name))
            existing_mode, existing_number = existing

            number = clamp_percent(raw_value, existing_number)
            flag = coerce_bool(raw_flag)
            is_absolute = flag if flag is not None else existing_mode == "absolute"

            if is_absolute:
                payload[field_name] = {"mode": "absolute", "value": number}
            else:
                payload[field_name] = {"mode": "relative", "percent": number}
        return payload

    @field_validator(
        "fraud_approval_rate_percent",
        "bank_decline_improvement_percent",
        "chargeback_reduction_percent",
        "dispute_rate_percent",
        "fraud_dispute_win_rate_percent",
        "service_dispute_rate_percent",
        "service_dispute_win_rate_percent",
        "time_per_review_reduction_percent",
        mode="before",
    )
    @classmethod
    def clamp_percent_fields(cls, value: Any, info: ValidationInfo) -> float:
        return clamp_percent(value, _field_default(cls, info.field_name))


class DriverToggles(BaseModel):
    """Which value drivers count toward the total value."""

    model_config = ConfigDict(extra="forbid")

    gmv_uplift: bool = True
    chargeback_savings: bool = True


CHALLENGE_AREAS: dict[str, str] = {
    "fraud-systems": "Fraud systems / customer experience",
    "payments": "Payments",
    "chargebacks": "Chargebacks",
    "abuse-prevention": "Abuse Prevention",
    "account-identity": "Account/Identity abuse",
}

SOLUTIONS: dict[str, str] = {
    "fraud-management": "Fraud Management",
    "payments-optimization": "Payments Optimization",
    "chargeback-recovery": "Chargeback Recovery",
    "policy-abuse-prevention": "Policy Abuse Prevention",
    "account-protection": "Account Protection",
}


def normalize_catalog_ids(value: Any, catalog: dict[str, str]) -> list[str] | None:
    """Map a list of ids or display names onto catalog ids, deduplicated.

    Returns None when the value is not a list or holds an unknown entry.
    """
    if not isinstance(value, (list, tuple)):
        return None
    by_name = {name.lower(): key for key, name in catalog.items()}
    selected: list[str] = []
    for entry in value:
        if not isinstance(entry, str):
            return None
        lowered = entry.strip().lower()
        key = by_name.get(lowered, lowered.replace(" ", "-"))
        if key not in catalog:
            return None
        if key not in selected:
            selected.append(key)
    return selected


class CustomerProfile(BaseModel):
    """Descriptive customer details; never used in the calculation."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    customer_name: str | None = None
    industry: str | None = None
    hq_location: str | None = None
    challenge_areas: list[str] = Field(default_factory=list, description="Selected ids from CHALLENGE_AREAS.")
    solutions: list[str] = Field(default_factory=list, description="Selected ids from SOLUTIONS.")

    @field_validator("challenge_areas", "solutions", mode="before")
    @classmethod
    def normalize_selection(cls, value: Any, info: ValidationInfo) -> list[str]:
        if value is None:
            return []
        catalog = CHALLENGE_AREAS if info.field_name == "challenge_areas" else SOLUTIONS
        selected = normalize_catalog_ids(value, catalog)
        if selected is None:
            raise ValueError(f"{info.field_name} must be a list of: {', '.join(catalog)}")
        return selected


class InputProfile(BaseModel):
    """Full set of merchant metrics and vendor assumptions for one assessment."""

    model_config = ConfigDict(extra="forbid")

    regions: dict[RegionKey, RegionInput] = Field(default_factory=dict)
    chargebacks: ChargebackInput = Field(default_factory=ChargebackInput)
    vendor: VendorKPIs = Field(default_factory=VendorKPIs)
    drivers: DriverToggles = Field(default_factory=DriverToggles)
    margin_enabled: bool = False
    customer: CustomerProfile = Field(default_factory=CustomerProfile)

    @field_validator("regions", mode="before")
    @classmethod
    def bind_region_keys(cls, value: Any) -> Any:
        """Normalize region keys and stamp each region payload with its key."""
        if not isinstance(value, dict):
            return value

        bound: dict[str, Any] = {}
        for raw_key, region_payload in value.items():
            key = str(raw_key).strip().upper()
            if isinstance(region_payload, RegionInput):
                bound[key] = region_payload.model_dump()
                bound[key]["region"] = key
            elif isinstance(region_payload, dict):
                bound[key] = {**region_payload, "region": key}
            else:
                bound[key] = region_payload
        return bound

    def present_regions(self) -> list[tuple[RegionKey, RegionInput]]:
        """Regions with non-zero GMV, in AMER, EMEA, APAC order."""
        return [
            (key, self.regions[key])
            for key in REGION_ORDER
            if key in self.regions and self.regions[key].is_present
        ]


def _merge_payload(base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in update.items():
        current = merged.get(key)
        # A dict carrying a `mode` key is a whole RateAdjustment and replaces the old one.
        if isinstance(value, dict) and isinstance(current, dict) and "mode" not in value:
            merged[key] = _merge_payload(current, value)
        else:
            merged[key] = value
    return merged


def apply_profile_update(profile: InputProfile, update: dict[str, Any]) -> InputProfile:
    """Return a new profile with a partial nested update merged in.

    The update is validated in full before anything is returned, so a
    malformed update never yields a partially applied profile.

    Raises:
        pydantic.ValidationError: If the merged payload is not a valid profile.
    """
    merged = _merge_payload(profile.model_dump(), update)
    return InputProfile.model_validate(merged)
