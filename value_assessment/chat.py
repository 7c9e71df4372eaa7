"""Chat-based data collection for the value assessment.

The assistant replies with free-form JSON carrying a flat `updatedData`
object (`amerAnnualGMV`, `amer3DSChallengeRate`, `fraudChargebackRate`,
`vendorKPIs.*`, ...). That payload is untrusted: it is translated to the
nested profile layout, unknown keys and unusable values are dropped, and the
merged profile is fully validated before it replaces the previous one. Any
failure leaves the previous profile untouched.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Literal, TypedDict

from pydantic import ValidationError

from value_assessment.llm import ChatMessage, OpenRouterClientError, generate_chat_completion
from value_assessment.models import (
    CHALLENGE_AREAS,
    SOLUTIONS,
    AbsoluteAdjustment,
    InputProfile,
    apply_profile_update,
    coerce_bool,
    coerce_number,
    normalize_catalog_ids,
    normalize_fraud_check_timing,
)

logger = logging.getLogger(__name__)

FieldKind = Literal["number", "flag", "text", "timing", "challenges", "solutions"]

RETRY_MESSAGE = "I'm sorry, I encountered an error. Could you please try again?"
ACKNOWLEDGEMENT_MESSAGE = "Got it."
INVALID_UPDATE_MESSAGE = (
    "I couldn't apply those values to the assessment. Could you restate them, one metric at a time?"
)
GREETING_MESSAGE = (
    "Hello! I'll help you calculate the potential GMV uplift from a managed fraud service. "
    "Let's start with your AMER region. What are your annual GMV attempts in USD "
    "(the total value of all transaction attempts)?"
)


class ChatResponseError(ValueError):
    """Raised when an assistant reply cannot be used as a profile update."""


class ChatReply(TypedDict):
    message: str
    updated_data: dict[str, Any]
    is_complete: bool


class ChatTurnResult(TypedDict):
    message: str
    profile: InputProfile
    is_complete: bool
    applied_fields: list[str]
    rejected_fields: list[str]
    error: str | None


@dataclass(frozen=True)
class ChatConfig:
    temperature: float = 0.7
    timeout_seconds: float = 30.0
    max_history_turns: int = 40


DEFAULT_CHAT_CONFIG = ChatConfig()

_REGION_PREFIXES: dict[str, str] = {"amer": "AMER", "emea": "EMEA", "apac": "APAC"}

# (wire suffixes, canonical first) -> (RegionInput field, kind)
_REGION_FIELDS: list[tuple[tuple[str, ...], str, FieldKind]] = [
    (("AnnualGMV", "GrossRevenue"), "annual_gmv_attempts", "number"),
    (("GrossAttempts",), "gross_attempts_count", "number"),
    (("GrossMarginPercent", "GrossMargin"), "gross_margin_percent", "number"),
    (("FraudCheckTiming",), "fraud_check_timing", "timing"),
    (("PreAuthApprovalRate",), "pre_auth_fraud_approval_rate_percent", "number"),
    (("PostAuthApprovalRate",), "post_auth_fraud_approval_rate_percent", "number"),
    (("IssuingBankDeclineRate",), "issuing_bank_decline_rate_percent", "number"),
    (("3DSChallengeRate",), "three_ds_challenge_rate_percent", "number"),
    (("3DSAbandonmentRate",), "three_ds_abandonment_rate_percent", "number"),
    (("ManualReviewRate",), "manual_review_rate_percent", "number"),
    (("AlternativePaymentMethodsRate",), "alternative_payment_methods_percent", "number"),
]

_TOP_LEVEL_FIELDS: list[tuple[tuple[str, ...], tuple[str, ...], FieldKind]] = [
    (("fraudChargebackRate", "fraudCBRate"), ("chargebacks", "fraud_chargeback_rate_percent"), "number"),
    (("fraudChargebackAOV", "fraudCBAOV"), ("chargebacks", "fraud_chargeback_aov"), "number"),
    (("serviceChargebackRate", "serviceCBRate"), ("chargebacks", "service_chargeback_rate_percent"), "number"),
    (("serviceChargebackAOV", "serviceCBAOV"), ("chargebacks", "service_chargeback_aov"), "number"),
    (("customerName",), ("customer", "customer_name"), "text"),
    (("industry",), ("customer", "industry"), "text"),
    (("hqLocation",), ("customer", "hq_location"), "text"),
    (("challengeAreas", "challenges"), ("customer", "challenge_areas"), "challenges"),
    (("solutions",), ("customer", "solutions"), "solutions"),
    (("marginEnabled",), ("margin_enabled",), "flag"),
    (("gmvUpliftEnabled",), ("drivers", "gmv_uplift"), "flag"),
    (("chargebackSavingsEnabled",), ("drivers", "chargeback_savings"), "flag"),
]

_VENDOR_CONTAINERS: tuple[str, ...] = ("vendorKPIs", "forterKPIs")

_VENDOR_FIELDS: list[tuple[tuple[str, ...], str, FieldKind]] = [
    (("fraudApprovalRate", "fraudApproval"), "fraud_approval_rate_percent", "number"),
    (("bankDeclineImprovement",), "bank_decline_improvement_percent", "number"),
    (("chargebackReduction",), "chargeback_reduction_percent", "number"),
    (("disputeRate",), "dispute_rate_percent", "number"),
    (("fraudDisputeWinRate",), "fraud_dispute_win_rate_percent", "number"),
    (("serviceDisputeRate",), "service_dispute_rate_percent", "number"),
    (("serviceDisputeWinRate",), "service_dispute_win_rate_percent", "number"),
    (("timePerReviewReduction",), "time_per_review_reduction_percent", "number"),
    (("threeDSChallengeReduction", "threeDSChallenge"), "three_ds_challenge_reduction_percent", "number"),
    (("threeDSChallengeIsAbsolute",), "three_ds_challenge_is_absolute", "flag"),
    (("threeDSAbandonmentImprovement", "threeDSAbandonment"), "three_ds_abandonment_improvement_percent", "number"),
    (("threeDSAbandonmentIsAbsolute",), "three_ds_abandonment_is_absolute", "flag"),
    (("manualReviewReduction", "manualReview"), "manual_review_reduction_percent", "number"),
    (("manualReviewIsAbsolute",), "manual_review_is_absolute", "flag"),
]

# "UsePercentage" true means a relative adjustment, i.e. the inverse of IsAbsolute.
_INVERTED_VENDOR_FLAGS: dict[str, str] = {
    "threeDSChallengeUsePercentage": "three_ds_challenge_is_absolute",
    "threeDSAbandonmentUsePercentage": "three_ds_abandonment_is_absolute",
    "manualReviewUsePercentage": "manual_review_is_absolute",
}

# The fraud approval KPI only exists as an absolute target rate. A flag that
# marks it relative makes its value unusable, so both keys are dropped.
# flag -> (value that marks the number as relative, value keys it governs)
_ABSOLUTE_TARGET_FLAGS: dict[str, tuple[bool, tuple[str, ...]]] = {
    "fraudApprovalUsePercentage": (True, ("fraudApprovalRate", "fraudApproval")),
    "fraudApprovalIsAbsolute": (False, ("fraudApprovalRate", "fraudApproval")),
}


def _build_lookup() -> dict[str, tuple[tuple[str, ...], FieldKind]]:
    lookup: dict[str, tuple[tuple[str, ...], FieldKind]] = {}
    for prefix, region in _REGION_PREFIXES.items():
        for suffixes, field_name, kind in _REGION_FIELDS:
            for suffix in suffixes:
                lookup[f"{prefix}{suffix}"] = (("regions", region, field_name), kind)
    for keys, path, kind in _TOP_LEVEL_FIELDS:
        for key in keys:
            lookup[key] = (path, kind)
    return lookup


_FLAT_LOOKUP = _build_lookup()
_VENDOR_LOOKUP: dict[str, tuple[str, FieldKind]] = {
    key: (field_name, kind) for keys, field_name, kind in _VENDOR_FIELDS for key in keys
}


def _clean_value(value: Any, kind: FieldKind) -> Any:
    """Return a usable value for the field kind, or None to drop it."""
    if kind == "number":
        return coerce_number(value)
    if kind == "flag":
        return coerce_bool(value)
    if kind == "timing":
        return normalize_fraud_check_timing(value)
    if kind == "challenges":
        return normalize_catalog_ids(value, CHALLENGE_AREAS)
    if kind == "solutions":
        return normalize_catalog_ids(value, SOLUTIONS)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _set_path(target: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    node = target
    for key in path[:-1]:
        node = node.setdefault(key, {})
    node[path[-1]] = value


def translate_flat_update(flat: dict[str, Any]) -> tuple[dict[str, Any], list[str], list[str]]:
    """Translate flat wire keys into a nested profile update.

    Returns:
        The nested update, the wire keys applied, and the wire keys dropped
        (unknown keys and values that could not be interpreted).
    """
    update: dict[str, Any] = {}
    applied: list[str] = []
    rejected: list[str] = []

    for key, raw_value in flat.items():
        if key in _VENDOR_CONTAINERS:
            if not isinstance(raw_value, dict):
                rejected.append(key)
                continue
            relative_keys = {
                value_key
                for flag_key, (relative_value, value_keys) in _ABSOLUTE_TARGET_FLAGS.items()
                if flag_key in raw_value and coerce_bool(raw_value[flag_key]) is relative_value
                for value_key in value_keys
            }
            for vendor_key, vendor_value in raw_value.items():
                wire_key = f"{key}.{vendor_key}"
                if vendor_key in _ABSOLUTE_TARGET_FLAGS:
                    flag = coerce_bool(vendor_value)
                    if flag is None or flag is _ABSOLUTE_TARGET_FLAGS[vendor_key][0]:
                        rejected.append(wire_key)
                    else:
                        applied.append(wire_key)
                    continue
                if vendor_key in relative_keys:
                    rejected.append(wire_key)
                    continue
                if vendor_key in _INVERTED_VENDOR_FLAGS:
                    flag = coerce_bool(vendor_value)
                    if flag is None:
                        rejected.append(wire_key)
                        continue
                    _set_path(update, ("vendor", _INVERTED_VENDOR_FLAGS[vendor_key]), not flag)
                    applied.append(wire_key)
                    continue
                if vendor_key not in _VENDOR_LOOKUP:
                    rejected.append(wire_key)
                    continue
                field_name, kind = _VENDOR_LOOKUP[vendor_key]
                cleaned = _clean_value(vendor_value, kind)
                if cleaned is None:
                    rejected.append(wire_key)
                    continue
                _set_path(update, ("vendor", field_name), cleaned)
                applied.append(wire_key)
            continue

        if key not in _FLAT_LOOKUP:
            rejected.append(key)
            continue
        path, kind = _FLAT_LOOKUP[key]
        cleaned = _clean_value(raw_value, kind)
        if cleaned is None:
            rejected.append(key)
            continue
        _set_path(update, path, cleaned)
        applied.append(key)

    return update, applied, rejected


def profile_to_flat(profile: InputProfile) -> dict[str, Any]:
    """Render a profile in the flat wire layout the assistant reads and writes."""
    flat: dict[str, Any] = {}
    for prefix, region_key in _REGION_PREFIXES.items():
        region = profile.regions.get(region_key)
        if region is None:
            continue
        for suffixes, field_name, _ in _REGION_FIELDS:
            value = getattr(region, field_name)
            if value is not None:
                flat[f"{prefix}{suffixes[0]}"] = value

    dumped = profile.model_dump()
    for keys, path, _ in _TOP_LEVEL_FIELDS:
        node: Any = dumped
        for part in path:
            node = node[part]
        if node is not None and node != []:
            flat[keys[0]] = node

    vendor = profile.vendor
    vendor_flat: dict[str, Any] = {
        "fraudApprovalRate": vendor.fraud_approval_rate_percent,
        "bankDeclineImprovement": vendor.bank_decline_improvement_percent,
        "chargebackReduction": vendor.chargeback_reduction_percent,
        "disputeRate": vendor.dispute_rate_percent,
        "fraudDisputeWinRate": vendor.fraud_dispute_win_rate_percent,
        "serviceDisputeRate": vendor.service_dispute_rate_percent,
        "serviceDisputeWinRate": vendor.service_dispute_win_rate_percent,
        "timePerReviewReduction": vendor.time_per_review_reduction_percent,
    }
    for wire_name, adjustment in (
        ("threeDSChallengeReduction", vendor.three_ds_challenge),
        ("threeDSAbandonmentImprovement", vendor.three_ds_abandonment),
        ("manualReviewReduction", vendor.manual_review),
    ):
        is_absolute = isinstance(adjustment, AbsoluteAdjustment)
        vendor_flat[wire_name] = adjustment.value if is_absolute else adjustment.percent
        flag_name = wire_name.replace("Reduction", "").replace("Improvement", "") + "IsAbsolute"
        vendor_flat[flag_name] = is_absolute
    flat["vendorKPIs"] = vendor_flat
    return flat


_CODE_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)

_TERMINOLOGY_REPLACEMENTS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bannual\s+gross\s+revenue\b", re.IGNORECASE), "annual GMV attempts"),
    (re.compile(r"\bgross\s+revenue\b", re.IGNORECASE), "Annual GMV Attempts"),
    (re.compile(r"\brevenue\b", re.IGNORECASE), "GMV"),
]


def sanitize_assistant_text(message: str) -> str:
    """Replace revenue wording with the GMV terminology the calculator uses."""
    for pattern, replacement in _TERMINOLOGY_REPLACEMENTS:
        message = pattern.sub(replacement, message)
    return message


def parse_assistant_reply(raw: str) -> ChatReply:
    """Parse the assistant's JSON reply.

    Markdown code fences are stripped first. A reply that is not a JSON
    object is kept as plain conversational text with no data update.

    Raises:
        ChatResponseError: If the JSON is an object but `updatedData` is not.
    """
    cleaned = _CODE_FENCE.sub("", raw).strip()
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        logger.warning("assistant_reply_not_json", extra={"extra": {"preview": cleaned[:200]}})
        return {"message": sanitize_assistant_text(cleaned), "updated_data": {}, "is_complete": False}

    if not isinstance(parsed, dict):
        return {"message": sanitize_assistant_text(cleaned), "updated_data": {}, "is_complete": False}

    updated = parsed.get("updatedData") or {}
    if not isinstance(updated, dict):
        raise ChatResponseError("updatedData must be a JSON object")

    message = parsed.get("message")
    if not isinstance(message, str) or not message.strip():
        message = ""

    return {
        "message": sanitize_assistant_text(message),
        "updated_data": updated,
        "is_complete": coerce_bool(parsed.get("isComplete")) is True,
    }


def build_system_prompt(profile: InputProfile) -> str:
    """System prompt carrying the collection rules and the data gathered so far."""
    collected = json.dumps(profile_to_flat(profile), sort_keys=True)
    return (
        "You are a helpful assistant for a fraud management value assessment tool. "
        "Collect only the metrics needed to calculate GMV uplift and chargeback savings.\n\n"
        "Per region (start with AMER, then ask whether EMEA and APAC apply), keys prefixed amer/emea/apac:\n"
        "- <region>AnnualGMV: annual GMV attempts in USD (required)\n"
        "- <region>GrossAttempts: number of transaction attempts\n"
        "- <region>GrossMarginPercent (default 50)\n"
        "- <region>FraudCheckTiming: 'pre-auth' or 'post-auth'\n"
        "- <region>PreAuthApprovalRate or <region>PostAuthApprovalRate, matching the timing\n"
        "- <region>IssuingBankDeclineRate (default 7, EMEA 5)\n"
        "- <region>3DSChallengeRate, <region>3DSAbandonmentRate, <region>ManualReviewRate\n\n"
        "Chargebacks: fraudChargebackRate (default 0.8), fraudChargebackAOV (default 158), "
        "serviceChargebackRate, serviceChargebackAOV.\n\n"
        "Optional context: customerName, industry, hqLocation, challengeAreas (any of: "
        f"{', '.join(CHALLENGE_AREAS)}) and solutions (any of: {', '.join(SOLUTIONS)}).\n\n"
        "After at least one region is complete, ask whether to customize expected vendor performance. "
        "If yes, ask one metric at a time and store them under vendorKPIs: fraudApprovalRate, "
        "bankDeclineImprovement, chargebackReduction, threeDSChallengeReduction + threeDSChallengeIsAbsolute, "
        "threeDSAbandonmentImprovement + threeDSAbandonmentIsAbsolute, manualReviewReduction + "
        "manualReviewIsAbsolute, and timePerReviewReduction. fraudApprovalRate is always the target "
        "approval rate, never a percentage change. IsAbsolute is true when the user gives the "
        "resulting rate rather than a percentage reduction.\n\n"
        "Rules:\n"
        "- Never ask for revenue; always say Annual GMV Attempts (USD).\n"
        "- Ask one question at a time.\n"
        "- Convert numbers: '75 million' -> 75000000, '95%' -> 95.\n"
        "- Set isComplete true only once the user confirms they are done.\n"
        "- Respond with pure JSON only, no markdown, in exactly this shape:\n"
        '{"message": "...", "updatedData": {"amerAnnualGMV": 75000000}, "isComplete": false}\n\n'
        f"Data collected so far: {collected}"
    )


def _trim_history(messages: list[ChatMessage], config: ChatConfig) -> list[ChatMessage]:
    conversation = [message for message in messages if message["role"] in {"user", "assistant"}]
    return conversation[-config.max_history_turns :]


def _failed_turn(profile: InputProfile, message: str, error: str, rejected: list[str] | None = None) -> ChatTurnResult:
    return {
        "message": message,
        "profile": profile,
        "is_complete": False,
        "applied_fields": [],
        "rejected_fields": rejected or [],
        "error": error,
    }


def run_chat_turn(
    profile: InputProfile,
    history: list[ChatMessage],
    user_message: str,
    config: ChatConfig = DEFAULT_CHAT_CONFIG,
    completion: Callable[..., str] | None = None,
) -> ChatTurnResult:
    """Run one assistant turn and merge its data update into the profile.

    On any transport, parse or validation failure the previous profile is
    returned unchanged together with a retry message and the error text.
    """
    messages = [*_trim_history(history, config), {"role": "user", "content": user_message}]

    try:
        raw = (completion or generate_chat_completion)(
            build_system_prompt(profile),
            messages,
            temperature=config.temperature,
            timeout=config.timeout_seconds,
        )
        reply = parse_assistant_reply(raw)
    except (OpenRouterClientError, ChatResponseError) as exc:
        logger.warning("chat_turn_failed", extra={"extra": {"reason": str(exc)}})
        return _failed_turn(profile, RETRY_MESSAGE, str(exc))

    update, applied, rejected = translate_flat_update(reply["updated_data"])
    if rejected:
        logger.info("chat_update_fields_dropped", extra={"extra": {"fields": rejected}})

    try:
        updated_profile = apply_profile_update(profile, update) if update else profile
    except ValidationError as exc:
        logger.warning("chat_update_rejected", extra={"extra": {"reason": str(exc)}})
        return _failed_turn(profile, INVALID_UPDATE_MESSAGE, str(exc), rejected)

    return {
        "message": reply["message"] or ACKNOWLEDGEMENT_MESSAGE,
        "profile": updated_profile,
        "is_complete": reply["is_complete"],
        "applied_fields": applied,
        "rejected_fields": rejected,
        "error": None,
    }
