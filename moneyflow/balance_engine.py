from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0")
CENT = Decimal("0.01")
TRANSACTION_TYPES = {"income", "expense", "transfer"}

# Transfers are stored as a single ledger row and do not move any balance.
EFFECT_SIGN = {
    "income": 1,
    "expense": -1,
    "transfer": 0,
}


@dataclass(frozen=True)
class BalanceChange:
    account_id: int
    delta: Decimal


def normalize_transaction_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in TRANSACTION_TYPES:
        raise ValueError("Transaction type must be income, expense, or transfer.")
    return normalized


def balance_effect(txn_type: str, amount: Decimal) -> Decimal:
    """Signed delta a transaction applies to its account's balance."""
    normalized = normalize_transaction_type(txn_type)
    coerced = _coerce_amount(amount)
    if coerced <= ZERO:
        raise ValueError("Amount must be greater than zero.")
    return coerced * EFFECT_SIGN[normalized]


def apply_transaction_effect(balance: Decimal, txn_type: str, amount: Decimal) -> Decimal:
    return _coerce_amount(balance) + balance_effect(txn_type, amount)


def reverse_transaction_effect(balance: Decimal, txn_type: str, amount: Decimal) -> Decimal:
    return _coerce_amount(balance) - balance_effect(txn_type, amount)


def plan_balance_changes(
    old_account_id: int,
    old_type: str,
    old_amount: Decimal,
    new_account_id: int,
    new_type: str,
    new_amount: Decimal,
) -> list[BalanceChange]:
    """Deltas that move an edited transaction from its old to its new effect.

    Same account: one net delta (reverse-then-apply collapsed). Different
    accounts: reverse on the old one, apply on the new one. Zero deltas are
    dropped.
    """
    old_effect = balance_effect(old_type, old_amount)
    new_effect = balance_effect(new_type, new_amount)
    if old_account_id == new_account_id:
        changes = [BalanceChange(account_id=new_account_id, delta=new_effect - old_effect)]
    else:
        changes = [
            BalanceChange(account_id=old_account_id, delta=-old_effect),
            BalanceChange(account_id=new_account_id, delta=new_effect),
        ]
    return [change for change in changes if change.delta != ZERO]


def to_cents(amount: Decimal | int | float | str) -> Decimal:
    """Round to the two decimal places money columns store."""
    return _coerce_amount(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
