"""Tests for gateway signature verification."""

import pytest

from cart_service.payment import sign_payment, verify_payment

GATEWAY_SECRET = "test-gateway-secret"
HEX = "0123456789abcdef"


@pytest.fixture()
def signature():
    return sign_payment("order_Q1", "pay_Q1", GATEWAY_SECRET)


class TestVerifyPayment:
    def test_valid_signature(self, signature):
        verification = verify_payment("order_Q1", "pay_Q1", signature)

        assert verification.verified
        assert verification.reason is None
        assert verification.idempotency_key == ("order_Q1", "pay_Q1")

    def test_signature_is_hex_sha256(self, signature):
        assert len(signature) == 64
        assert set(signature) <= set(HEX)

    def test_every_single_character_mutation_is_rejected(self, signature):
        for position, char in enumerate(signature):
            replacement = HEX[(HEX.index(char) + 1) % len(HEX)]
            mutated = signature[:position] + replacement + signature[position + 1:]

            verification = verify_payment("order_Q1", "pay_Q1", mutated)

            assert not verification.verified, position
            assert verification.reason == "signature-mismatch"

    def test_signature_is_bound_to_both_ids(self, signature):
        assert not verify_payment("order_Q2", "pay_Q1", signature).verified
        assert not verify_payment("order_Q1", "pay_Q2", signature).verified

    def test_separator_is_part_of_the_message(self):
        signature = sign_payment("order_Q", "1pay", GATEWAY_SECRET)

        assert not verify_payment("order_Q1", "pay", signature).verified

    @pytest.mark.parametrize(
        "order_id, payment_id, sig",
        [("", "pay_Q1", "x"), ("order_Q1", "", "x"), ("order_Q1", "pay_Q1", ""), (None, None, None)],
    )
    def test_missing_field(self, order_id, payment_id, sig):
        verification = verify_payment(order_id, payment_id, sig)

        assert not verification.verified
        assert verification.reason == "missing-field"

    def test_missing_secret_is_a_configuration_failure(self, signature, monkeypatch):
        monkeypatch.delenv("PAYMENT_GATEWAY_SECRET", raising=False)

        verification = verify_payment("order_Q1", "pay_Q1", signature)

        assert not verification.verified
        assert verification.reason == "secret-not-configured"

    def test_secret_is_read_at_call_time(self, monkeypatch):
        monkeypatch.setenv("PAYMENT_GATEWAY_SECRET", "rotated-secret")

        assert verify_payment("order_Q1", "pay_Q1", sign_payment("order_Q1", "pay_Q1", "rotated-secret")).verified

    def test_explicit_secret(self):
        signature = sign_payment("order_Q1", "pay_Q1", "other")

        assert verify_payment("order_Q1", "pay_Q1", signature, secret="other").verified
