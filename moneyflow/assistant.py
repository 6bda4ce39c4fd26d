"""Financial assistant built on an injected text generator.

The generator is an opaque collaborator: it receives a prompt plus a context
string and returns text. Categorization degrades to ``"Other"`` when it
fails; insight and chat requests have no fallback and raise
``UpstreamUnavailable``.
"""

from __future__ import annotations

from decimal import Decimal
import logging
from typing import Iterable, Optional, Protocol

from moneyflow.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

CATEGORIES = [
    "Food & Dining",
    "Shopping",
    "Transportation",
    "Entertainment",
    "Bills & Utilities",
    "Health & Fitness",
    "Travel",
    "Education",
    "Personal Care",
    "Home",
    "Gifts & Donations",
    "Business",
    "Other",
]
FALLBACK_CATEGORY = "Other"
HISTORY_LIMIT = 10


class TextGenerator(Protocol):
    def generate(self, prompt: str, context: str) -> str:
        ...


def categorize_transaction(
    generator: Optional[TextGenerator],
    description: Optional[str],
    merchant: Optional[str],
    amount: Decimal,
) -> str:
    if generator is None:
        return FALLBACK_CATEGORY
    prompt = (
        f"Categorize this transaction into ONE of these categories: {', '.join(CATEGORIES)}\n\n"
        "Transaction Details:\n"
        f"- Description: {description or 'N/A'}\n"
        f"- Merchant: {merchant or 'N/A'}\n"
        f"- Amount: {amount}\n\n"
        "Respond with ONLY the category name, nothing else."
    )
    try:
        suggestion = generator.generate(prompt, "")
    except Exception:
        logger.warning("Categorization failed; using %s", FALLBACK_CATEGORY, exc_info=True)
        return FALLBACK_CATEGORY
    return match_category(suggestion)


def match_category(suggestion: Optional[str]) -> str:
    cleaned = (suggestion or "").strip().strip(".").strip()
    for category in CATEGORIES:
        if category.lower() == cleaned.lower():
            return category
    return FALLBACK_CATEGORY


def build_financial_context(
    total_balance: Decimal,
    monthly_income: Decimal,
    monthly_expense: Decimal,
    account_count: int,
    budget_count: int,
    budgets_over_limit: int = 0,
    top_categories: Iterable[str] = (),
) -> str:
    net = monthly_income - monthly_expense
    savings_rate = (net / monthly_income * 100) if monthly_income > 0 else Decimal("0")
    categories = ", ".join(top_categories) or "None"
    lines = [
        "Current User Financial Context:",
        f"- Total Balance: {total_balance}",
        f"- Monthly Income: {monthly_income}",
        f"- Monthly Expenses: {monthly_expense}",
        f"- Net Savings: {net}",
        f"- Savings Rate: {savings_rate:.1f}%",
        f"- Number of Accounts: {account_count}",
        f"- Active Budgets: {budget_count}",
        f"- Budgets Over Limit: {budgets_over_limit}",
        f"- Top Spending Categories: {categories}",
    ]
    return "\n".join(lines)


def generate_insights(generator: Optional[TextGenerator], context: str) -> str:
    prompt = (
        "Analyze this financial data and provide actionable insights covering "
        "spending patterns, budget adherence, savings opportunities and overall "
        "financial health. Format with markdown."
    )
    return _generate(generator, prompt, context, "Unable to generate insights at this time.")


def chat(
    generator: Optional[TextGenerator],
    message: str,
    context: str,
    history: Iterable[tuple[str, str]] = (),
) -> str:
    recent = list(history)[-HISTORY_LIMIT:]
    transcript = "\n".join(f"{role}: {content}" for role, content in recent)
    prompt = f"{transcript}\nuser: {message}" if transcript else message
    return _generate(
        generator, prompt, context, "I apologize, but I could not generate a response."
    )


def _generate(
    generator: Optional[TextGenerator], prompt: str, context: str, empty_reply: str
) -> str:
    if generator is None:
        raise UpstreamUnavailable("Assistant is not configured.")
    try:
        reply = generator.generate(prompt, context)
    except Exception as exc:
        logger.warning("Assistant request failed", exc_info=True)
        raise UpstreamUnavailable("Assistant is unavailable.") from exc
    return (reply or "").strip() or empty_reply
