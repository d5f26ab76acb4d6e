"""Tests for payment classification and filter-token matching."""

from __future__ import annotations

import pytest

from platform_ledger.payments import (
    BankPayment,
    CashPayment,
    CryptoPayment,
    OtherPayment,
    PaymentToken,
    bank_transaction_type,
    classify_payment,
    derive_payment_tokens,
    matches_token,
    normalize_subtype,
    payment_tokens,
)


def test_normalize_subtype_strips_punctuation_and_case():
    assert normalize_subtype("Wire-Transfer") == "wiretransfer"
    assert normalize_subtype(None) == ""


@pytest.mark.parametrize("text", ["Wire-Transfer", "ACH / Direct", "  swift 2 "])
def test_normalize_subtype_is_idempotent(text):
    once = normalize_subtype(text)
    assert normalize_subtype(once) == once


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("bank", PaymentToken("bank")),
        ("Bank:Wire", PaymentToken("bank", "Wire")),
        ("cash:", PaymentToken("cash", "")),
        ("crypto:USDT", PaymentToken("crypto", "USDT")),
        ("bank:wire:extra", PaymentToken("bank", "wire")),
    ],
)
def test_payment_token_parse(text, expected):
    token = PaymentToken.parse(text)

    assert token == expected
    assert token.has_subtype is (expected.subtype is not None)


def test_payment_token_str_round_trips_shape():
    assert str(PaymentToken("bank", "wire")) == "bank:wire"
    assert str(PaymentToken("cash")) == "cash"


def test_bank_transaction_type_prefers_explicit_column():
    row = {"bank_transaction_type": "ACH", "payment_data": '{"transaction_type": "wire"}'}
    assert bank_transaction_type(row) == "ACH"


def test_bank_transaction_type_reads_json_blob():
    assert bank_transaction_type({"payment_data": '{"transactionType": "Wire"}'}) == "Wire"
    assert bank_transaction_type({"payment_data": {"transaction_type": "ach"}}) == "ach"


def test_bank_transaction_type_ignores_malformed_json():
    assert bank_transaction_type({"payment_data": "{not json"}) == ""
    assert bank_transaction_type({"payment_data": "[1, 2]"}) == ""


def test_classify_payment_variants():
    assert classify_payment({"payment_method": "Bank Transfer", "bank_transaction_type": "wire"}) == BankPayment(
        method="Bank Transfer", transaction_type="wire"
    )
    assert classify_payment({"payment_method": "cash", "cash_receipt_number": "R-1"}) == CashPayment(
        method="cash", receipt_number="R-1"
    )
    assert classify_payment(
        {"payment_method": "crypto", "crypto_currency": "USDT", "crypto_network": "TRC20"}
    ) == CryptoPayment(method="crypto", currency="USDT", network="TRC20")
    assert classify_payment({"payment_method": "voucher"}) == OtherPayment(method="voucher")


def test_payment_tokens_per_variant():
    assert payment_tokens({"payment_method": "bank", "bank_transaction_type": "Wire"}) == {"bank", "bank:wire"}
    assert payment_tokens({"payment_method": "cash"}) == {"cash"}
    assert payment_tokens({"payment_method": "crypto", "crypto_currency": "usdt", "crypto_network": "TRC20"}) == {
        "crypto:USDT",
        "crypto:trc20",
    }
    assert payment_tokens({"payment_method": "voucher"}) == set()


def test_derive_payment_tokens_includes_defaults_sorted():
    tokens = derive_payment_tokens(
        [
            {"payment_method": "crypto", "crypto_currency": "usdt"},
            {"payment_method": "bank", "payment_data": '{"transaction_type": "ACH"}'},
            {"payment_method": "cash"},
        ]
    )

    assert tokens == sorted(tokens)
    assert {"bank:transfer", "crypto:USDC", "crypto:USDT", "bank", "bank:ach", "cash"} == set(tokens)


def test_derive_payment_tokens_without_rows_offers_defaults():
    assert derive_payment_tokens([]) == ["bank:transfer", "crypto:USDC"]


def test_base_token_matches_by_method_containment():
    assert matches_token({"payment_method": "Bank Transfer"}, PaymentToken.parse("bank"))
    assert not matches_token({"payment_method": "cash"}, PaymentToken.parse("bank"))


def test_bank_subtype_matches_normalized_transaction_type():
    row = {"payment_method": "bank", "bank_transaction_type": "Wire-Transfer"}

    assert matches_token(row, PaymentToken.parse("bank:wire transfer"))
    assert matches_token(row, PaymentToken.parse("bank:wire"))
    assert not matches_token(row, PaymentToken.parse("bank:ach"))


def test_bank_subtype_falls_back_to_method_text():
    row = {"payment_method": "bank - ach"}

    assert matches_token(row, PaymentToken.parse("bank:ACH"))


def test_bank_subtype_reads_json_payment_data():
    row = {"payment_method": "bank", "payment_data": '{"transactionType": "SWIFT"}'}

    assert matches_token(row, PaymentToken.parse("bank:swift"))


def test_crypto_subtype_matches_currency_or_network_ignoring_case():
    row = {"payment_method": "crypto", "crypto_currency": "USDT", "crypto_network": "TRC20"}

    assert matches_token(row, PaymentToken.parse("crypto:usdt"))
    assert matches_token(row, PaymentToken.parse("crypto:trc20"))
    assert not matches_token(row, PaymentToken.parse("crypto:BTC"))


def test_cash_tokens():
    row = {"payment_method": "cash"}

    assert matches_token(row, PaymentToken.parse("cash:"))
    assert not matches_token(row, PaymentToken.parse("cash:register"))


def test_bank_subtype_never_matches_non_bank_rows():
    row = {"payment_method": "cash", "bank_transaction_type": "wire"}

    assert not matches_token(row, PaymentToken.parse("bank:wire"))
