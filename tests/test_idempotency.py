import pytest

from repairflow.idempotency import CarrierEventDeduplicator
from repairflow.webhook_security import (
    WebhookSignatureError,
    compute_hmac_sha256,
    constant_time_compare,
    verify_carrier_signature,
)


class TestCarrierEventDeduplicator:
    def test_claims_once(self):
        dedup = CarrierEventDeduplicator(use_redis=False)
        assert dedup.claim("evt-1")
        assert not dedup.claim("evt-1")
        assert dedup.claim("evt-2")

    def test_release_allows_a_retry(self):
        dedup = CarrierEventDeduplicator(use_redis=False)
        assert dedup.claim("evt-1")
        dedup.release("evt-1")
        assert dedup.claim("evt-1")

    def test_expired_claims_are_forgotten(self, monkeypatch):
        now = [1_000.0]
        monkeypatch.setattr("repairflow.idempotency.time.time", lambda: now[0])
        dedup = CarrierEventDeduplicator(ttl_seconds=60, use_redis=False)
        assert dedup.claim("evt-1")
        now[0] += 61
        assert dedup.claim("evt-1")

    def test_cache_is_bounded(self):
        dedup = CarrierEventDeduplicator(max_entries=2, use_redis=False)
        for event_id in ("a", "b", "c"):
            assert dedup.claim(event_id)
        assert len(dedup._memory) == 2
        # Oldest entry was evicted
        assert dedup.claim("a")


class TestCarrierSignature:
    SECRET = "carrier-shared-secret"
    BODY = b'{"trackingNumber":"1Z999","eventId":"evt-1"}'

    def test_constant_time_compare(self):
        assert constant_time_compare("abc", "abc")
        assert not constant_time_compare("abc", "abd")
        assert not constant_time_compare("", "")

    def test_no_secret_skips_the_check(self):
        verify_carrier_signature(self.BODY, None, secret=None)

    def test_valid_signature(self):
        signature = compute_hmac_sha256(self.SECRET, self.BODY)
        verify_carrier_signature(self.BODY, signature, secret=self.SECRET)
        verify_carrier_signature(self.BODY, f"sha256={signature}", secret=self.SECRET)

    def test_missing_signature(self):
        with pytest.raises(WebhookSignatureError, match="Missing"):
            verify_carrier_signature(self.BODY, None, secret=self.SECRET)

    def test_wrong_signature(self):
        signature = compute_hmac_sha256("other-secret", self.BODY)
        with pytest.raises(WebhookSignatureError, match="Invalid"):
            verify_carrier_signature(self.BODY, signature, secret=self.SECRET)
