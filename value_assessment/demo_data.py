"""Shared demo profiles for the server, the harness script, and tests.

This module avoids FastAPI imports so scripts can run without the web stack
while reusing identical sample merchants.
"""

from __future__ import annotations

from typing import Any

from value_assessment.models import InputProfile

DEMO_PROFILE_PAYLOADS: dict[str, dict[str, Any]] = {
    "single_region_amer": {
        "customer": {"customer_name": "Northwind Outfitters", "industry": "Apparel", "hq_location": "Seattle, US"},
        "regions": {
            "AMER": {
                "annual_gmv_attempts": 75_000_000,
                "gross_attempts_count": 500_000,
                "fraud_check_timing": "pre-auth",
                "pre_auth_fraud_approval_rate_percent": 95,
                "issuing_bank_decline_rate_percent": 7,
                "three_ds_challenge_rate_percent": 10,
                "three_ds_abandonment_rate_percent": 5,
                "manual_review_rate_percent": 3,
            }
        },
    },
    "global_retailer": {
        "customer": {
            "customer_name": "Globex Home",
            "industry": "Home Goods",
            "hq_location": "London, UK",
            "challenge_areas": ["payments", "chargebacks"],
            "solutions": ["fraud-management", "chargeback-recovery"],
        },
        "margin_enabled": True,
        "regions": {
            "AMER": {
                "annual_gmv_attempts": 90_000_000,
                "gross_attempts_count": 600_000,
                "gross_margin_percent": 45,
                "pre_auth_fraud_approval_rate_percent": 94,
                "three_ds_challenge_rate_percent": 5,
                "manual_review_rate_percent": 4,
            },
            "EMEA": {
                "annual_gmv_attempts": 40_000_000,
                "gross_attempts_count": 250_000,
                "gross_margin_percent": 55,
                "fraud_check_timing": "post-auth",
                "post_auth_fraud_approval_rate_percent": 97.5,
                "three_ds_challenge_rate_percent": 35,
                "three_ds_abandonment_rate_percent": 12,
                "alternative_payment_methods_percent": 20,
            },
            "APAC": {
                "annual_gmv_attempts": 20_000_000,
                "gross_margin_percent": 40,
                "issuing_bank_decline_rate_percent": 9,
            },
        },
        "chargebacks": {
            "fraud_chargeback_rate_percent": 0.6,
            "fraud_chargeback_aov": 142,
            "service_chargeback_rate_percent": 0.3,
            "service_chargeback_aov": 120,
        },
        "vendor": {
            "three_ds_challenge": {"mode": "absolute", "value": 8},
        },
    },
    "chargebacks_only": {
        "customer": {"customer_name": "Initech Digital", "industry": "Digital Goods", "hq_location": "Austin, US"},
        "drivers": {"gmv_uplift": False, "chargeback_savings": True},
        "regions": {"AMER": {"annual_gmv_attempts": 150_000_000}},
    },
    "empty": {},
}


def build_demo_profiles() -> dict[str, InputProfile]:
    """Return every demo profile, validated, keyed by name."""
    return {name: InputProfile.model_validate(payload) for name, payload in DEMO_PROFILE_PAYLOADS.items()}


def get_demo_profile(name: str) -> InputProfile:
    """Return one demo profile by name.

    Raises:
        KeyError: If no demo profile has that name.
    """
    if name not in DEMO_PROFILE_PAYLOADS:
        raise KeyError(f"Unknown demo profile: {name}")
    return InputProfile.model_validate(DEMO_PROFILE_PAYLOADS[name])
