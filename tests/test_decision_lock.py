from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from repairflow.domain.cases import decision_lock as hashing

START = datetime(2025, 1, 10, 9, 0, 0)
END = datetime(2025, 1, 10, 17, 0, 0)


def payload(**overrides):
    fields = {
        "verified_facts": ["Front pads at 2mm"],
        "unknowns": ["Caliper slide pins"],
        "remaining_risks": ["Caliper may need replacement"],
        "install_window_start": START,
        "install_window_end": END,
        "consent_data": True,
        "parts_strategy": "STATE_A_SUPPLIER_CUSTODY",
        "client_ip": "203.0.113.7",
        "device_info": "pytest",
        "version": "1",
    }
    fields.update(overrides)
    return hashing.build_decision_lock_payload(**fields)


def test_canonical_timestamp_format():
    assert hashing.to_canonical_timestamp(START) == "2025-01-10T09:00:00.000Z"
    aware = datetime(2025, 1, 10, 10, 0, 0, 123456, tzinfo=timezone(timedelta(hours=1)))
    assert hashing.to_canonical_timestamp(aware) == "2025-01-10T09:00:00.123Z"


def test_canonical_json_sorts_keys_and_drops_whitespace():
    assert hashing.canonical_json({"b": 1, "a": [1, 2], "c": START}) == (
        '{"a":[1,2],"b":1,"c":"2025-01-10T09:00:00.000Z"}'
    )


def test_hash_is_deterministic_sha256_hex():
    first = hashing.compute_audit_hash(payload())
    second = hashing.compute_audit_hash(payload())
    assert first == second
    assert len(first) == 64
    int(first, 16)


def test_key_order_does_not_matter():
    original = payload()
    reordered = dict(reversed(list(original.items())))
    assert hashing.compute_audit_hash(original) == hashing.compute_audit_hash(reordered)


def test_any_field_change_changes_the_hash():
    base = hashing.compute_audit_hash(payload())
    assert hashing.compute_audit_hash(payload(unknowns=[])) != base
    assert hashing.compute_audit_hash(payload(install_window_end=END + timedelta(hours=1))) != base
    assert hashing.compute_audit_hash(payload(consent_data=False)) != base
    assert hashing.compute_audit_hash(payload(client_ip=None)) != base


def test_consent_normalisation():
    assert hashing.normalize_consent(True) == {"accepted": True}
    assert hashing.normalize_consent({"accepted": True, "method": "checkbox"}) == {
        "accepted": True,
        "method": "checkbox",
    }
    assert payload()["consentData"] == {"accepted": True}


def test_receipt_hash_differs_from_lock_hash():
    lock_payload = payload()
    receipt_payload = hashing.build_receipt_payload(lock_payload)
    lock_hash = hashing.compute_audit_hash(lock_payload)
    receipt_hash = hashing.compute_receipt_hash(receipt_payload, "lock-1")
    assert receipt_hash != lock_hash
    assert hashing.compute_receipt_hash(receipt_payload, "lock-2") != receipt_hash
    assert receipt_payload["risksAccepted"] == lock_payload["remainingRisks"]


def test_timing_plan_serialises_to_canonical_strings():
    receipt_payload = hashing.build_receipt_payload(payload())
    assert hashing.serialize_timing_plan(receipt_payload) == {
        "installWindowStart": "2025-01-10T09:00:00.000Z",
        "installWindowEnd": "2025-01-10T17:00:00.000Z",
    }


def stored_lock(lock_payload):
    return SimpleNamespace(
        verified_facts=lock_payload["verifiedFacts"],
        unknowns=lock_payload["unknowns"],
        remaining_risks=lock_payload["remainingRisks"],
        install_window_start=lock_payload["installWindowStart"],
        install_window_end=lock_payload["installWindowEnd"],
        consent_data=lock_payload["consentData"],
        parts_strategy=lock_payload["partsStrategy"],
        client_ip=lock_payload["clientIp"],
        device_info=lock_payload["deviceInfo"],
        version=lock_payload["version"],
        audit_hash=hashing.compute_audit_hash(lock_payload),
    )


def test_verify_decision_lock_detects_tampering():
    lock = stored_lock(payload())
    assert hashing.verify_decision_lock(lock)
    lock.remaining_risks = []
    assert not hashing.verify_decision_lock(lock)


def test_verify_decision_receipt_round_trip_and_tamper():
    receipt_payload = hashing.build_receipt_payload(payload(), legal_refs={"terms": "v3"})
    receipt = SimpleNamespace(
        decision_lock_id="lock-1",
        verified_facts=receipt_payload["verifiedFacts"],
        risks_accepted=receipt_payload["risksAccepted"],
        unknowns=receipt_payload["unknowns"],
        timing_plan=hashing.serialize_timing_plan(receipt_payload),
        legal_refs=receipt_payload["legalRefs"],
        audit_hash=hashing.compute_receipt_hash(receipt_payload, "lock-1"),
    )
    assert hashing.verify_decision_receipt(receipt)
    receipt.verified_facts = ["something else"]
    assert not hashing.verify_decision_receipt(receipt)
