import pytest
from pydantic import ValidationError

from value_assessment.models import (
    AbsoluteAdjustment,
    ChargebackInput,
    CustomerProfile,
    InputProfile,
    RegionInput,
    RelativeAdjustment,
    VendorKPIs,
    apply_profile_update,
    coerce_number,
    normalize_fraud_check_timing,
)
from value_assessment.regions import get_region_defaults


def test_region_defaults_depend_on_region() -> None:
    assert RegionInput(region="AMER").issuing_bank_decline_rate_percent == 7.0
    assert RegionInput(region="EMEA").issuing_bank_decline_rate_percent == 5.0
    assert RegionInput(region="APAC").issuing_bank_decline_rate_percent == 7.0
    assert get_region_defaults("emea").issuing_bank_decline_rate_percent == 5.0
    with pytest.raises(KeyError):
        get_region_defaults("LATAM")


def test_profile_binds_region_keys() -> None:
    profile = InputProfile.model_validate({"regions": {"emea": {"annual_gmv_attempts": 10}}})
    assert list(profile.regions) == ["EMEA"]
    assert profile.regions["EMEA"].region == "EMEA"
    assert profile.regions["EMEA"].issuing_bank_decline_rate_percent == 5.0


def test_unknown_region_is_rejected() -> None:
    with pytest.raises(ValidationError):
        InputProfile.model_validate({"regions": {"LATAM": {"annual_gmv_attempts": 10}}})


def test_percentages_and_currency_are_clamped() -> None:
    region = RegionInput.model_validate(
        {
            "region": "AMER",
            "annual_gmv_attempts": -500,
            "gross_attempts_count": -3,
            "three_ds_challenge_rate_percent": 140,
            "manual_review_rate_percent": -5,
            "gross_margin_percent": "62%",
        }
    )
    assert region.annual_gmv_attempts == 0.0
    assert region.gross_attempts_count == 0.0
    assert region.three_ds_challenge_rate_percent == 100.0
    assert region.manual_review_rate_percent == 0.0
    assert region.gross_margin_percent == 62.0


def test_nan_and_garbage_fall_back_to_defaults() -> None:
    region = RegionInput.model_validate(
        {
            "region": "EMEA",
            "annual_gmv_attempts": float("nan"),
            "issuing_bank_decline_rate_percent": "lots",
            "three_ds_abandonment_rate_percent": float("inf"),
            "pre_auth_fraud_approval_rate_percent": None,
        }
    )
    assert region.annual_gmv_attempts == 0.0
    assert region.issuing_bank_decline_rate_percent == 5.0
    assert region.three_ds_abandonment_rate_percent == 5.0
    assert region.pre_auth_fraud_approval_rate_percent == 95.0


def test_chargeback_input_clamps() -> None:
    chargebacks = ChargebackInput(fraud_chargeback_rate_percent=250, fraud_chargeback_aov=-1)
    assert chargebacks.fraud_chargeback_rate_percent == 100.0
    assert chargebacks.fraud_chargeback_aov == 0.0
    assert ChargebackInput(fraud_chargeback_rate_percent=float("nan")).fraud_chargeback_rate_percent == 0.8


def test_coerce_number_accepts_formatted_strings() -> None:
    assert coerce_number("$75,000,000") == 75_000_000.0
    assert coerce_number("12.5%") == 12.5
    assert coerce_number(True) is None
    assert coerce_number("n/a") is None
    assert coerce_number(float("-inf")) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("pre-auth", "pre-auth"),
        ("Pre Auth", "pre-auth"),
        ("before", "pre-auth"),
        ("POST_AUTH", "post-auth"),
        ("after", "post-auth"),
        ("sometimes", None),
        (3, None),
    ],
)
def test_normalize_fraud_check_timing(raw, expected) -> None:
    assert normalize_fraud_check_timing(raw) == expected


def test_invalid_timing_is_rejected_by_region_model() -> None:
    with pytest.raises(ValidationError):
        RegionInput(region="AMER", fraud_check_timing="sometimes")


def test_vendor_defaults() -> None:
    vendor = VendorKPIs()
    assert vendor.fraud_approval_rate_percent == 99.0
    assert vendor.bank_decline_improvement_percent == 1.0
    assert vendor.chargeback_reduction_percent == 70.0
    assert vendor.three_ds_challenge == RelativeAdjustment(percent=30.0)
    assert vendor.three_ds_abandonment == RelativeAdjustment(percent=2.0)
    assert vendor.manual_review == RelativeAdjustment(percent=50.0)


def test_dual_mode_flags_fold_into_adjustment() -> None:
    vendor = VendorKPIs.model_validate(
        {
            "three_ds_challenge_reduction_percent": 4,
            "three_ds_challenge_is_absolute": True,
            "manual_review_reduction_percent": 25,
        }
    )
    assert vendor.three_ds_challenge == AbsoluteAdjustment(value=4.0)
    assert vendor.manual_review == RelativeAdjustment(percent=25.0)
    assert vendor.three_ds_abandonment == RelativeAdjustment(percent=2.0)


def test_dual_mode_flag_alone_keeps_existing_number() -> None:
    vendor = VendorKPIs.model_validate({"three_ds_abandonment_is_absolute": "yes"})
    assert vendor.three_ds_abandonment == AbsoluteAdjustment(value=2.0)


def test_tagged_adjustment_payloads() -> None:
    vendor = VendorKPIs.model_validate({"three_ds_challenge": {"mode": "absolute", "value": 120}})
    assert vendor.three_ds_challenge == AbsoluteAdjustment(value=100.0)
    with pytest.raises(ValidationError):
        VendorKPIs.model_validate({"three_ds_challenge": {"mode": "sideways", "value": 1}})


def test_present_regions_skip_zero_gmv_in_region_order() -> None:
    profile = InputProfile.model_validate(
        {
            "regions": {
                "APAC": {"annual_gmv_attempts": 5},
                "EMEA": {"annual_gmv_attempts": 0},
                "AMER": {"annual_gmv_attempts": 10},
            }
        }
    )
    assert [key for key, _ in profile.present_regions()] == ["AMER", "APAC"]


def test_region_average_order_value() -> None:
    region = RegionInput(region="AMER", annual_gmv_attempts=1_000_000, gross_attempts_count=4_000)
    assert region.average_order_value == pytest.approx(250.0)
    assert RegionInput(region="AMER", annual_gmv_attempts=1_000_000).average_order_value is None


def test_apply_profile_update_merges_nested_values() -> None:
    profile = InputProfile.model_validate({"regions": {"AMER": {"annual_gmv_attempts": 75_000_000}}})
    updated = apply_profile_update(
        profile,
        {
            "regions": {"AMER": {"three_ds_challenge_rate_percent": 12}, "EMEA": {"annual_gmv_attempts": 1_000}},
            "vendor": {"manual_review": {"mode": "absolute", "value": 1}},
        },
    )

    assert updated.regions["AMER"].annual_gmv_attempts == 75_000_000
    assert updated.regions["AMER"].three_ds_challenge_rate_percent == 12.0
    assert updated.regions["EMEA"].issuing_bank_decline_rate_percent == 5.0
    assert updated.vendor.manual_review == AbsoluteAdjustment(value=1.0)
    assert profile.regions["AMER"].three_ds_challenge_rate_percent == 0.0


def test_apply_profile_update_rejects_unknown_fields_atomically() -> None:
    profile = InputProfile.model_validate({"regions": {"AMER": {"annual_gmv_attempts": 75_000_000}}})
    with pytest.raises(ValidationError):
        apply_profile_update(profile, {"regions": {"AMER": {"annual_gmv_attempts": 1, "bogus": 2}}})
    assert profile.regions["AMER"].annual_gmv_attempts == 75_000_000


def test_time_per_review_reduction_is_descriptive() -> None:
    assert VendorKPIs().time_per_review_reduction_percent == 80.0
    assert VendorKPIs(time_per_review_reduction_percent=140).time_per_review_reduction_percent == 100.0
    assert VendorKPIs(time_per_review_reduction_percent="n/a").time_per_review_reduction_percent == 80.0


def test_customer_challenges_and_solutions_are_normalized() -> None:
    customer = CustomerProfile(
        challenge_areas=["Account/Identity abuse", " payments ", "payments"],
        solutions=["chargeback recovery"],
    )
    assert customer.challenge_areas == ["account-identity", "payments"]
    assert customer.solutions == ["chargeback-recovery"]
    assert CustomerProfile(challenge_areas=None).challenge_areas == []

    with pytest.raises(ValidationError):
        CustomerProfile(challenge_areas=["crypto"])
    with pytest.raises(ValidationError):
        CustomerProfile(solutions="fraud-management")
