"""Payment taxonomy reconstructed from inconsistently shaped payment rows.

Payment detail rows were written by several code paths over time: some carry
an explicit subtype column, some bury it in a JSON ``payment_data`` blob and
some only have the free-text ``payment_method``. :func:`classify_payment`
turns any of those shapes into one tagged variant, and the report filters use
the helpers below to derive and match ``base[:subtype]`` tokens.

Bank subtypes match by normalized containment in either direction, so a short
subtype such as ``"in"`` also matches unrelated types that contain it.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Set, Union

from .constants import DEFAULT_PAYMENT_TOKENS, PaymentBase


_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class BankPayment:
    method: str
    transaction_type: str = ""


@dataclass(frozen=True)
class CashPayment:
    method: str
    receipt_number: str = ""


@dataclass(frozen=True)
class CryptoPayment:
    method: str
    currency: str = ""
    network: str = ""


@dataclass(frozen=True)
class OtherPayment:
    method: str


PaymentVariant = Union[BankPayment, CashPayment, CryptoPayment, OtherPayment]


@dataclass(frozen=True)
class PaymentToken:
    """A report filter token of the form ``base`` or ``base:subtype``.

    ``subtype`` is ``None`` when the token has no colon and ``""`` for a
    trailing colon such as ``"cash:"``. Only the text between the first and
    second colon is the subtype; anything after a second colon is ignored.
    """

    base: str
    subtype: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "PaymentToken":
        raw = str(text or "").strip()
        if ":" not in raw:
            return cls(base=raw.lower())
        base, subtype = raw.split(":")[:2]
        return cls(base=base.strip().lower(), subtype=subtype.strip())

    @property
    def has_subtype(self) -> bool:
        return self.subtype is not None

    def __str__(self) -> str:
        if self.subtype is None:
            return self.base
        return f"{self.base}:{self.subtype}"


def normalize_subtype(text: Any) -> str:
    """Lower-case ``text`` and drop everything that is not ``[a-z0-9]``.

    >>> normalize_subtype("Wire-Transfer")
    'wiretransfer'
    """

    return _NON_ALPHANUMERIC.sub("", str(text or "").lower())


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _payment_data(value: Any) -> Mapping[str, Any]:
    if isinstance(value, Mapping):
        return value
    if isinstance(value, (str, bytes)) and value:
        try:
            decoded = json.loads(value)
        except ValueError:
            return {}
        if isinstance(decoded, Mapping):
            return decoded
    return {}


def bank_transaction_type(row: Mapping[str, Any]) -> str:
    """The bank transaction type of ``row``.

    The explicit ``bank_transaction_type`` column wins; otherwise the value
    comes from ``payment_data`` under ``transaction_type`` or
    ``transactionType``. Malformed JSON counts as absent.
    """

    explicit = _text(row.get("bank_transaction_type"))
    if explicit:
        return explicit
    data = _payment_data(row.get("payment_data"))
    for key in ("transaction_type", "transactionType"):
        nested = _text(data.get(key))
        if nested:
            return nested
    return ""


def as_bank(row: Mapping[str, Any]) -> BankPayment:
    return BankPayment(method=_text(row.get("payment_method")), transaction_type=bank_transaction_type(row))


def as_crypto(row: Mapping[str, Any]) -> CryptoPayment:
    return CryptoPayment(
        method=_text(row.get("payment_method")),
        currency=_text(row.get("crypto_currency")),
        network=_text(row.get("crypto_network")),
    )


def classify_payment(row: Mapping[str, Any]) -> PaymentVariant:
    """Reconstruct the payment variant of a ``payment_details`` row."""

    method = _text(row.get("payment_method"))
    lowered = method.lower()
    if PaymentBase.BANK.value in lowered:
        return as_bank(row)
    if PaymentBase.CASH.value in lowered:
        return CashPayment(method=method, receipt_number=_text(row.get("cash_receipt_number")))
    if PaymentBase.CRYPTO.value in lowered:
        return as_crypto(row)
    return OtherPayment(method=method)


def payment_tokens(row: Mapping[str, Any]) -> Set[str]:
    """Filter tokens contributed by one payment row.

    Bank rows give ``bank`` and ``bank:<type>``; cash rows give ``cash``;
    crypto rows give ``crypto:<CURRENCY>`` and ``crypto:<network>``.
    """

    payment = classify_payment(row)
    tokens: Set[str] = set()
    if isinstance(payment, BankPayment):
        tokens.add(PaymentBase.BANK.value)
        if payment.transaction_type:
            tokens.add(f"bank:{payment.transaction_type.lower()}")
    elif isinstance(payment, CashPayment):
        tokens.add(PaymentBase.CASH.value)
    elif isinstance(payment, CryptoPayment):
        if payment.currency:
            tokens.add(f"crypto:{payment.currency.upper()}")
        if payment.network:
            tokens.add(f"crypto:{payment.network.lower()}")
    return tokens


def derive_payment_tokens(rows: Iterable[Mapping[str, Any]]) -> List[str]:
    """Sorted union of every row's tokens plus the default tokens."""

    tokens: Set[str] = set(DEFAULT_PAYMENT_TOKENS)
    for row in rows:
        tokens.update(payment_tokens(row))
    return sorted(tokens)


def _contains_either_way(left: str, right: str) -> bool:
    return left == right or right in left or left in right


def matches_token(row: Mapping[str, Any], token: PaymentToken) -> bool:
    """Whether a payment row satisfies ``token``.

    The row's free-text method must contain the token's base. Without a
    subtype that is enough. ``crypto:<X>`` compares X with the currency or
    the network, ignoring case. ``bank:<X>`` compares normalized forms of X
    and the row's transaction type, then falls back to the normalized method
    text. Cash never matches a non-empty subtype.
    """

    method = _text(row.get("payment_method")).lower()
    if token.base not in method:
        return False
    if not token.subtype:
        return True

    if token.base == PaymentBase.CRYPTO.value:
        crypto = as_crypto(row)
        wanted = token.subtype.lower()
        return bool(
            (crypto.currency and crypto.currency.lower() == wanted)
            or (crypto.network and crypto.network.lower() == wanted)
        )

    if token.base == PaymentBase.BANK.value:
        wanted = normalize_subtype(token.subtype)
        recorded = normalize_subtype(as_bank(row).transaction_type)
        if recorded and _contains_either_way(recorded, wanted):
            return True
        return _contains_either_way(normalize_subtype(method), wanted)

    return False
