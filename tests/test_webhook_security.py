"""
Tests for Standard Webhooks signature verification.
"""

import base64

import pytest

from app.webhook_security import (
    WebhookSignatureError,
    compute_signature,
    constant_time_compare,
    extract_signing_key,
    verify_timestamp,
    verify_webhook_signature,
)

SECRET = "whsec_" + base64.b64encode(b"unit-test-signing-key").decode()
NOW = 1_900_000_000
BODY = b'{"type":"payment.succeeded"}'


def headers_for(body=BODY, webhook_id="msg_1", timestamp=NOW, secret=SECRET, signature=None):
    ts = str(timestamp)
    if signature is None:
        signature = f"v1,{compute_signature(secret, webhook_id, ts, body)}"
    return {"webhook-id": webhook_id, "webhook-timestamp": ts, "webhook-signature": signature}


class TestSigningKey:
    def test_whsec_prefix_is_base64_decoded(self):
        assert extract_signing_key(SECRET) == b"unit-test-signing-key"

    def test_non_base64_secret_is_used_verbatim(self):
        assert extract_signing_key("plain secret!") == b"plain secret!"

    def test_constant_time_compare_rejects_empty(self):
        assert constant_time_compare("", "") is False
        assert constant_time_compare("abc", "abc") is True


class TestVerifyTimestamp:
    def test_within_tolerance(self):
        verify_timestamp(str(NOW - 299), max_age=300, now=NOW)
        verify_timestamp(str(NOW + 299), max_age=300, now=NOW)

    def test_outside_tolerance(self):
        with pytest.raises(WebhookSignatureError):
            verify_timestamp(str(NOW - 301), max_age=300, now=NOW)
        with pytest.raises(WebhookSignatureError):
            verify_timestamp(str(NOW + 301), max_age=300, now=NOW)

    def test_not_a_number(self):
        with pytest.raises(WebhookSignatureError):
            verify_timestamp("yesterday", now=NOW)


class TestVerifyWebhookSignature:
    def test_valid_signature_returns_webhook_id(self):
        assert verify_webhook_signature(BODY, headers_for(), SECRET, now=NOW) == "msg_1"

    def test_any_matching_entry_is_accepted(self):
        good = compute_signature(SECRET, "msg_1", str(NOW), BODY)
        headers = headers_for(signature=f"v1,b2xkLXNpZ25hdHVyZQ== v1,{good}")

        assert verify_webhook_signature(BODY, headers, SECRET, now=NOW) == "msg_1"

    def test_unknown_version_is_ignored(self):
        good = compute_signature(SECRET, "msg_1", str(NOW), BODY)

        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(BODY, headers_for(signature=f"v2,{good}"), SECRET, now=NOW)

    def test_signature_covers_webhook_id(self):
        headers = headers_for()
        headers["webhook-id"] = "msg_2"

        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(BODY, headers, SECRET, now=NOW)

    def test_modified_body_fails(self):
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(BODY + b" ", headers_for(), SECRET, now=NOW)

    @pytest.mark.parametrize("missing", ["webhook-id", "webhook-timestamp", "webhook-signature"])
    def test_missing_header_fails(self, missing):
        headers = headers_for()
        del headers[missing]

        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(BODY, headers, SECRET, now=NOW)

    def test_unconfigured_secret_fails_closed(self):
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(BODY, headers_for(), None, now=NOW)

    def test_replayed_delivery_fails(self):
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(BODY, headers_for(), SECRET, now=NOW + 3600)
