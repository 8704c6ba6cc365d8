"""
Keyword Categorization

Best-effort suggestions for the category and tags of a transaction.
Nothing here affects balances: it is a pure lookup over an ordered table.
"""

import re
from typing import Optional


DEFAULT_CATEGORY = "Others"

# Order matters: the first category with a matching keyword wins
CATEGORY_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("Groceries", ("supermarket", "grocery", "market", "food", "vegetables", "fruits")),
    ("Transportation", ("uber", "ola", "taxi", "bus", "metro", "train", "fuel", "petrol", "diesel")),
    ("Dining", ("restaurant", "cafe", "food", "swiggy", "zomato", "hotel")),
    ("Shopping", ("mall", "clothing", "shoes", "amazon", "flipkart", "myntra")),
    ("Entertainment", ("movie", "theatre", "netflix", "amazon prime", "hotstar")),
    ("Bills", ("electricity", "water", "gas", "internet", "phone", "mobile", "broadband")),
    ("Health", ("hospital", "doctor", "medicine", "medical", "pharmacy", "healthcare")),
    ("Education", ("school", "college", "course", "tuition", "books", "stationery")),
    ("Rent", ("rent", "house rent", "apartment")),
    ("Investment", ("mutual fund", "stocks", "shares", "investment", "gold")),
    ("Salary", ("salary", "wage", "income", "payroll")),
    ("Transfer", ("transfer", "sent", "received")),
]

COMMON_TAG_KEYWORDS = ("bill", "monthly", "shopping", "food", "travel", "emergency", "gift")

_NON_TOKEN = re.compile(r"[^a-z0-9]")


def categorize_transaction(merchant: Optional[str] = "", notes: Optional[str] = "") -> str:
    """Category for a merchant/notes pair, `Others` when nothing matches."""
    text = f"{merchant or ''} {notes or ''}".lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def suggest_tags(
    merchant: Optional[str] = "",
    notes: Optional[str] = "",
    category: Optional[str] = "",
) -> list[str]:
    """
    Suggested tags, deduplicated.

    Includes the lowercased category, the merchant reduced to [a-z0-9],
    and every common keyword found in the combined text.
    """
    merchant = merchant or ""
    text = f"{merchant} {notes or ''} {category or ''}".lower()
    tags: list[str] = []

    def add(tag: str) -> None:
        if tag and tag not in tags:
            tags.append(tag)

    if category:
        add(category.lower())
    if merchant:
        add(_NON_TOKEN.sub("", merchant.lower()))
    for keyword in COMMON_TAG_KEYWORDS:
        if keyword in text:
            add(keyword)
    return tags
