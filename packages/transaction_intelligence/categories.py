"""Category assignment over the fixed taxonomy.

:func:`assign_category` is a pure function of one transaction and an optional
classifier signal. Rules, in order:

1. Inflows (``amount > 0``) are ``Income & Deposits``, or ``Transfers`` when
   the description uses transfer vocabulary. Classifier signals are ignored.
2. Outflows try the ordered keyword table; the first matching category wins.
3. With no keyword match, a classifier signal maps strong positive sentiment to
   ``Investments & Savings`` and strong negative sentiment to
   ``Utilities & Bills``; anything weaker falls back to amount buckets.
4. With neither, the category is ``Other``.

:func:`categorize_transactions` applies this to a batch, consulting the
classifier only for outflows without a keyword match.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .classifier import TextClassifier
from .fanout import p_map
from .logging_setup import get_logger
from .merchants import extract_merchant_key
from .models import (
    DINING,
    EDUCATION,
    ENTERTAINMENT,
    GROCERIES,
    HEALTHCARE,
    INCOME,
    INSURANCE,
    INVESTMENTS,
    OTHER,
    SHOPPING,
    SUBSCRIPTIONS,
    TRANSFERS,
    TRANSPORTATION,
    TRAVEL,
    UTILITIES,
    CategorizedTransaction,
    ClassifierSignal,
    Transaction,
)

_logger = get_logger("transaction_intelligence.categories")

# Confidence attached to each rule outcome.
KEYWORD_CONFIDENCE = 0.9
INCOME_KEYWORD_CONFIDENCE = 0.95
INCOME_DEFAULT_CONFIDENCE = 0.8
AMOUNT_BUCKET_CONFIDENCE = 0.6
OTHER_CONFIDENCE = 0.5
SIGNAL_THRESHOLD = 0.7

# Order matters: the first category whose vocabulary matches wins.
KEYWORD_TABLE: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        GROCERIES,
        (
            "grocery", "groceries", "supermarket", "whole foods", "trader joe",
            "trader joe's", "kroger", "safeway", "publix", "aldi", "lidl",
            "market", "food", "foods",
        ),
    ),
    (
        DINING,
        (
            "restaurant", "cafe", "coffee", "dining", "mcdonald", "mcdonald's",
            "starbucks", "subway", "pizza", "burger", "doordash", "grubhub",
            "uber eats", "bistro", "diner",
        ),
    ),
    (
        TRANSPORTATION,
        (
            "gas", "fuel", "shell", "exxon", "chevron", "bp", "uber", "lyft",
            "taxi", "transport", "transportation", "metro", "bus", "parking",
            "toll", "transit",
        ),
    ),
    (
        UTILITIES,
        (
            "electric", "electricity", "water", "internet", "phone", "cable",
            "utility", "utilities", "at&t", "verizon", "comcast", "t-mobile",
            "pg&e",
        ),
    ),
    (
        ENTERTAINMENT,
        (
            "entertainment", "movie", "movies", "cinema", "theater", "theatre",
            "concert", "ticketmaster", "amc", "steam", "playstation", "xbox",
            "bowling",
        ),
    ),
    (
        SUBSCRIPTIONS,
        (
            "netflix", "spotify", "subscription", "hulu", "disney", "prime",
            "apple music", "youtube", "adobe", "icloud", "membership",
        ),
    ),
    (
        SHOPPING,
        (
            "amazon", "amzn", "target", "walmart", "costco", "best buy",
            "home depot", "retail", "store", "ebay", "etsy", "ikea",
        ),
    ),
    (
        HEALTHCARE,
        (
            "medical", "doctor", "pharmacy", "hospital", "clinic", "cvs",
            "walgreens", "health", "dental", "gym", "fitness",
        ),
    ),
    (INSURANCE, ("insurance", "premium", "coverage", "geico", "allstate", "state farm")),
    (
        TRAVEL,
        (
            "hotel", "travel", "flight", "airline", "airlines", "booking",
            "expedia", "airbnb", "marriott", "hilton",
        ),
    ),
    (
        EDUCATION,
        (
            "school", "university", "education", "tuition", "student", "course",
            "coursera", "udemy",
        ),
    ),
    (
        INVESTMENTS,
        (
            "investment", "savings", "retirement", "401k", "ira", "mutual fund",
            "stock", "bond", "vanguard", "fidelity", "brokerage", "robinhood",
        ),
    ),
    (TRANSFERS, ("transfer", "payment", "venmo", "paypal", "zelle", "cash app")),
)

INCOME_VOCABULARY: tuple[str, ...] = (
    "salary", "payroll", "deposit", "direct deposit", "income", "refund",
    "cashback", "interest",
)
TRANSFER_VOCABULARY: tuple[str, ...] = ("transfer", "venmo", "paypal", "zelle", "cash app")


def _vocabulary_re(words: Iterable[str]) -> re.Pattern[str]:
    # Longest first so multi-word phrases win over their prefixes.
    alts = "|".join(re.escape(w) for w in sorted(set(words), key=len, reverse=True))
    return re.compile(rf"(?<!\w)(?:{alts})(?!\w)", re.IGNORECASE)


_KEYWORD_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (category, _vocabulary_re(words)) for category, words in KEYWORD_TABLE
)
_INCOME_RE = _vocabulary_re(INCOME_VOCABULARY)
_TRANSFER_RE = _vocabulary_re(TRANSFER_VOCABULARY)


def match_keyword_category(description: str) -> str | None:
    """Return the first category whose vocabulary appears in ``description``."""

    for category, pattern in _KEYWORD_PATTERNS:
        if pattern.search(description):
            return category
    return None


def _amount_bucket(amount: float) -> str:
    magnitude = abs(amount)
    if magnitude < 20:
        return DINING
    if magnitude < 100:
        return SHOPPING
    return OTHER


def assign_category(
    transaction: Transaction,
    signal: ClassifierSignal | None = None,
) -> CategorizedTransaction:
    """Categorize one transaction. Pure: no I/O, no logging."""

    description = transaction.description
    amount = float(transaction.amount)
    merchant_key = extract_merchant_key(description)

    def _result(
        category: str, confidence: float, label: str | None = None
    ) -> CategorizedTransaction:
        return CategorizedTransaction(
            transaction=transaction,
            category=category,
            confidence=confidence,
            merchant_key=merchant_key,
            classifier_label=label,
        )

    if amount > 0:
        if _INCOME_RE.search(description):
            return _result(INCOME, INCOME_KEYWORD_CONFIDENCE)
        if _TRANSFER_RE.search(description):
            return _result(TRANSFERS, KEYWORD_CONFIDENCE)
        return _result(INCOME, INCOME_DEFAULT_CONFIDENCE)

    keyword_category = match_keyword_category(description)
    if keyword_category is not None:
        return _result(keyword_category, KEYWORD_CONFIDENCE)

    if signal is not None:
        if signal.label == "positive" and signal.confidence > SIGNAL_THRESHOLD:
            return _result(INVESTMENTS, signal.confidence, signal.label)
        if signal.label == "negative" and signal.confidence > SIGNAL_THRESHOLD:
            return _result(UTILITIES, signal.confidence, signal.label)
        return _result(_amount_bucket(amount), AMOUNT_BUCKET_CONFIDENCE, signal.label)

    return _result(OTHER, OTHER_CONFIDENCE)


def _needs_signal(tx: Transaction) -> bool:
    return tx.amount <= 0 and match_keyword_category(tx.description) is None


def classifier_text(tx: Transaction) -> str:
    """Text sent to the classifier: the description plus the signed amount."""

    return f"{tx.description} Amount: {tx.amount}"


def coerce_transactions(transactions: Iterable[Transaction | Mapping[str, Any]]) -> list[Transaction]:
    """Materialize input once, validating raw mappings into :class:`Transaction`."""

    out: list[Transaction] = []
    for pos, item in enumerate(transactions):
        if isinstance(item, Transaction):
            out.append(item)
        elif isinstance(item, Mapping):
            out.append(Transaction.model_validate(item))
        else:
            raise TypeError(
                f"transaction at position {pos} must be a Transaction or a mapping with "
                "'id', 'date', 'description', 'amount'"
            )
    return out


def categorize_transactions(
    transactions: Iterable[Transaction | Mapping[str, Any]],
    *,
    classifier: TextClassifier | None = None,
    concurrency: int = 4,
) -> list[CategorizedTransaction]:
    """Categorize a batch in input order.

    Only outflows with no keyword match are sent to ``classifier``; those calls
    run concurrently up to ``concurrency``. A classifier that raises is treated
    as absent for that transaction.
    """

    seq: Sequence[Transaction] = coerce_transactions(transactions)
    signals: dict[int, ClassifierSignal | None] = {}

    if classifier is not None:
        pending = [i for i, tx in enumerate(seq) if _needs_signal(tx)]

        def _classify(i: int) -> ClassifierSignal | None:
            try:
                return classifier.classify(classifier_text(seq[i]))
            except Exception as e:  # noqa: BLE001
                _logger.warning(
                    "categorize:classifier_unavailable id=%s error=%s",
                    seq[i].id,
                    e.__class__.__name__,
                )
                return None

        if pending:
            for i, sig in zip(
                pending, p_map(pending, _classify, concurrency=concurrency), strict=True
            ):
                signals[i] = sig
            _logger.info(
                "categorize:classifier_consulted count=%d total=%d", len(pending), len(seq)
            )

    return [assign_category(tx, signals.get(i)) for i, tx in enumerate(seq)]


__all__ = [
    "KEYWORD_TABLE",
    "assign_category",
    "categorize_transactions",
    "classifier_text",
    "coerce_transactions",
    "match_keyword_category",
]
