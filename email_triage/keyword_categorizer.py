"""Offline keyword heuristics.

Used when ``[llm] provider = "keywords"`` so the tool can run without an LLM
API key. Categories are topical rather than action-oriented.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .categorizer import CategorizedEmail
from .mail_client import EmailMessage


class EmailCategory(str, Enum):
    WORK = "work"
    PERSONAL = "personal"
    FINANCE = "finance"
    SHOPPING = "shopping"
    SOCIAL = "social"
    PROMOTIONS = "promotions"
    SPAM = "spam"
    NEWSLETTER = "newsletter"
    OTHER = "other"


CATEGORY_KEYWORDS: Dict[EmailCategory, List[str]] = {
    EmailCategory.WORK: [
        "meeting", "project", "deadline", "report", "presentation",
        "client", "proposal", "budget", "invoice", "contract",
    ],
    EmailCategory.FINANCE: [
        "bank", "payment", "transaction", "credit", "debit",
        "account", "statement", "loan", "mortgage", "insurance",
    ],
    EmailCategory.SHOPPING: [
        "order", "purchase", "receipt", "shipping", "delivery",
        "product", "cart", "checkout", "discount", "sale",
    ],
    EmailCategory.SOCIAL: [
        "facebook", "twitter", "linkedin", "instagram", "notification",
        "friend", "follow", "like", "comment", "share",
    ],
    EmailCategory.PROMOTIONS: [
        "offer", "deal", "discount", "sale", "promotion",
        "limited time", "special", "coupon", "save", "free",
    ],
    EmailCategory.NEWSLETTER: [
        "newsletter", "subscription", "unsubscribe", "weekly",
        "monthly", "digest", "update", "news",
    ],
}

SPAM_INDICATORS = [
    "urgent",
    "act now",
    "limited time",
    "click here",
    "free money",
    "winner",
    "congratulations",
    "lottery",
    "prince",
    "inheritance",
]

CATEGORY_DESCRIPTIONS: Dict[EmailCategory, str] = {
    EmailCategory.WORK: "Meetings, projects, clients and other work topics",
    EmailCategory.PERSONAL: "Personal correspondence",
    EmailCategory.FINANCE: "Banking, payments and statements",
    EmailCategory.SHOPPING: "Orders, receipts and deliveries",
    EmailCategory.SOCIAL: "Social network activity",
    EmailCategory.PROMOTIONS: "Offers, deals and coupons",
    EmailCategory.SPAM: "Likely spam",
    EmailCategory.NEWSLETTER: "Newsletters and digests",
    EmailCategory.OTHER: "Nothing matched",
}


@dataclass
class KeywordMatch:
    email: EmailMessage
    category: EmailCategory
    confidence: float
    keywords: List[str] = field(default_factory=list)


def is_spam(email: EmailMessage) -> bool:
    text = f"{email.subject} {email.snippet}".lower()
    return sum(1 for indicator in SPAM_INDICATORS if indicator in text) >= 2


def categorize_email(email: EmailMessage) -> KeywordMatch:
    text = f"{email.subject} {email.snippet} {email.sender}".lower()
    best = KeywordMatch(email, EmailCategory.OTHER, 0.0, [])

    for category, keywords in CATEGORY_KEYWORDS.items():
        matched = [k for k in keywords if k in text]
        if not matched:
            continue
        confidence = len(matched) / len(keywords)
        if confidence > best.confidence:
            best = KeywordMatch(email, category, confidence, matched)

    if is_spam(email):
        best = KeywordMatch(email, EmailCategory.SPAM, 0.9, ["spam"])
    return best


def group_by_category(matches: Iterable[KeywordMatch]) -> Dict[EmailCategory, List[KeywordMatch]]:
    grouped: Dict[EmailCategory, List[KeywordMatch]] = {c: [] for c in EmailCategory}
    for match in matches:
        grouped[match.category].append(match)
    return grouped


def summary_stats(matches: Iterable[KeywordMatch]) -> Dict[EmailCategory, int]:
    return {c: len(items) for c, items in group_by_category(matches).items()}


class KeywordEmailCategorizer:
    """Same surface as LLMEmailCategorizer, backed by keyword matching."""

    def categorize_email(self, email: EmailMessage) -> CategorizedEmail:
        match = categorize_email(email)
        reasoning = (
            f"Matched keywords: {', '.join(match.keywords)}" if match.keywords else "No keywords matched"
        )
        return CategorizedEmail(email, match.category.value, match.confidence, reasoning)

    def categorize_emails(self, emails: List[EmailMessage]) -> List[CategorizedEmail]:
        return [self.categorize_email(email) for email in emails]

    def available_labels(self) -> List[str]:
        return [c.value for c in EmailCategory]

    def label_descriptions(self) -> Dict[str, str]:
        return {c.value: text for c, text in CATEGORY_DESCRIPTIONS.items()}

    def label_colors(self) -> Dict[str, Optional[str]]:
        return {c.value: None for c in EmailCategory}

    def create_default_config(self) -> None:
        return None
