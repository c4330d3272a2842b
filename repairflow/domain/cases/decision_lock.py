"""
Decision lock and decision receipt hashing.

The audit hash is a SHA-256 commitment over canonical JSON: keys sorted,
no insignificant whitespace, datetimes as UTC ISO-8601 with millisecond
precision and a trailing Z. Identical input always yields the same digest, so
a stored record can be re-hashed later to prove it was not altered.
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Optional


def to_canonical_timestamp(value: datetime) -> str:
    """Render a datetime as 2025-01-10T09:00:00.000Z (naive values are taken as UTC)"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return f"{value:%Y-%m-%dT%H:%M:%S}.{value.microsecond // 1000:03d}Z"


def _json_default(value: Any):
    if isinstance(value, datetime):
        return to_canonical_timestamp(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(payload: dict) -> str:
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=_json_default
    )


def compute_audit_hash(payload: dict) -> str:
    """SHA-256 hex digest of the canonical JSON of payload"""
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def normalize_consent(consent_data: Any) -> dict:
    """Consent objects are kept as-is; scalars are wrapped as {"accepted": bool}"""
    if isinstance(consent_data, dict):
        return consent_data
    return {"accepted": bool(consent_data)}


def build_decision_lock_payload(
    *,
    verified_facts: list,
    unknowns: list,
    remaining_risks: list,
    install_window_start: datetime,
    install_window_end: datetime,
    consent_data: Any,
    parts_strategy: str,
    client_ip: Optional[str] = None,
    device_info: Optional[str] = None,
    version: Optional[str] = None,
) -> dict:
    return {
        "verifiedFacts": list(verified_facts),
        "unknowns": list(unknowns),
        "remainingRisks": list(remaining_risks),
        "installWindowStart": install_window_start,
        "installWindowEnd": install_window_end,
        "consentData": normalize_consent(consent_data),
        "partsStrategy": parts_strategy,
        "clientIp": client_ip,
        "deviceInfo": device_info,
        "version": version,
    }


def build_receipt_payload(lock_payload: dict, legal_refs: Any = None) -> dict:
    """Customer-facing view of a decision lock payload"""
    return {
        "verifiedFacts": lock_payload["verifiedFacts"],
        "risksAccepted": lock_payload["remainingRisks"],
        "unknowns": lock_payload["unknowns"],
        "timingPlan": {
            "installWindowStart": lock_payload["installWindowStart"],
            "installWindowEnd": lock_payload["installWindowEnd"],
        },
        "legalRefs": legal_refs,
    }


def compute_receipt_hash(receipt_payload: dict, decision_lock_id: str) -> str:
    return compute_audit_hash({**receipt_payload, "decisionLockId": decision_lock_id})


def serialize_timing_plan(receipt_payload: dict) -> dict:
    """JSON-storable copy of the receipt timing plan"""
    timing = receipt_payload["timingPlan"]
    return {key: to_canonical_timestamp(value) for key, value in timing.items()}


# ============================================================================
# VERIFICATION
# ============================================================================


def lock_payload_from_record(lock) -> dict:
    """Rebuild the hashed payload from a stored DecisionLock"""
    return build_decision_lock_payload(
        verified_facts=lock.verified_facts,
        unknowns=lock.unknowns,
        remaining_risks=lock.remaining_risks,
        install_window_start=lock.install_window_start,
        install_window_end=lock.install_window_end,
        consent_data=lock.consent_data,
        parts_strategy=lock.parts_strategy,
        client_ip=lock.client_ip,
        device_info=lock.device_info,
        version=lock.version,
    )


def verify_decision_lock(lock) -> bool:
    return compute_audit_hash(lock_payload_from_record(lock)) == lock.audit_hash


def verify_decision_receipt(receipt) -> bool:
    receipt_payload = {
        "verifiedFacts": receipt.verified_facts,
        "risksAccepted": receipt.risks_accepted,
        "unknowns": receipt.unknowns,
        "timingPlan": receipt.timing_plan,
        "legalRefs": receipt.legal_refs,
    }
    return compute_receipt_hash(receipt_payload, receipt.decision_lock_id) == receipt.audit_hash
