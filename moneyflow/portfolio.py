from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

ZERO = Decimal("0")
CENT = Decimal("0.01")
INVESTMENT_TYPES = {"stock", "etf", "mutual_fund", "bond", "crypto", "real_estate", "commodity", "other"}


@dataclass(frozen=True)
class Holding:
    type: str
    shares: Decimal
    purchase_price: Decimal
    current_price: Optional[Decimal] = None
    is_active: bool = True

    @property
    def total_invested(self) -> Decimal:
        return _coerce_amount(self.shares) * _coerce_amount(self.purchase_price)

    @property
    def current_value(self) -> Decimal:
        price = self.current_price if self.current_price is not None else self.purchase_price
        return _coerce_amount(self.shares) * _coerce_amount(price)

    @property
    def gain_loss(self) -> Decimal:
        return self.current_value - self.total_invested

    @property
    def gain_loss_percent(self) -> Decimal:
        return gain_percent(self.gain_loss, self.total_invested)


@dataclass(frozen=True)
class TypeBreakdown:
    invested: Decimal
    current: Decimal
    count: int


@dataclass(frozen=True)
class PortfolioSummary:
    total_investments: int
    total_invested: Decimal
    current_value: Decimal
    total_gain_loss: Decimal
    total_gain_loss_percent: Decimal
    by_type: dict[str, TypeBreakdown] = field(default_factory=dict)


def normalize_investment_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in INVESTMENT_TYPES:
        raise ValueError("Invalid investment type.")
    return normalized


def gain_percent(gain: Decimal, invested: Decimal) -> Decimal:
    if invested == ZERO:
        return ZERO
    return (gain / invested * Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)


def summarize_portfolio(holdings: Iterable[Holding]) -> PortfolioSummary:
    count = 0
    invested_total = ZERO
    current_total = ZERO
    by_type: dict[str, list] = {}
    for holding in holdings:
        if not holding.is_active:
            continue
        count += 1
        invested = holding.total_invested
        current = holding.current_value
        invested_total += invested
        current_total += current
        bucket = by_type.setdefault(holding.type, [ZERO, ZERO, 0])
        bucket[0] += invested
        bucket[1] += current
        bucket[2] += 1
    gain = current_total - invested_total
    return PortfolioSummary(
        total_investments=count,
        total_invested=invested_total,
        current_value=current_total,
        total_gain_loss=gain,
        total_gain_loss_percent=gain_percent(gain, invested_total),
        by_type={
            key: TypeBreakdown(invested=value[0], current=value[1], count=value[2])
            for key, value in by_type.items()
        },
    )


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
