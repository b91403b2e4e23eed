"""Offline keyword categorizer."""

from __future__ import annotations

from email_triage.keyword_categorizer import (
    EmailCategory,
    KeywordEmailCategorizer,
    categorize_email,
    group_by_category,
    is_spam,
    summary_stats,
)


def test_work_keywords_win(make_email):
    email = make_email(subject="Project meeting", snippet="deadline for the client report", sender="boss@corp.com")
    match = categorize_email(email)
    assert match.category is EmailCategory.WORK
    assert match.confidence == 0.5
    assert set(match.keywords) == {"meeting", "project", "deadline", "report", "client"}


def test_no_keywords_is_other(make_email):
    match = categorize_email(make_email(subject="Hi", snippet="how are you", sender="a@b.c"))
    assert match.category is EmailCategory.OTHER
    assert match.confidence == 0.0
    assert match.keywords == []


def test_ties_keep_first_category(make_email):
    # "sale" and "discount" appear in both shopping and promotions (10 keywords each)
    match = categorize_email(make_email(subject="sale", snippet="discount", sender="x@y.z"))
    assert match.category is EmailCategory.SHOPPING


def test_spam_needs_two_indicators(make_email):
    one = make_email(subject="Urgent", snippet="please read", sender="x@y.z")
    two = make_email(subject="Congratulations winner", snippet="claim now", sender="x@y.z")
    assert not is_spam(one)
    assert is_spam(two)

    match = categorize_email(two)
    assert match.category is EmailCategory.SPAM
    assert match.confidence == 0.9
    assert match.keywords == ["spam"]


def test_grouping_lists_every_category(make_email):
    matches = [categorize_email(make_email("a", subject="bank statement", snippet="", sender=""))]
    grouped = group_by_category(matches)
    assert set(grouped) == set(EmailCategory)
    assert summary_stats(matches)[EmailCategory.FINANCE] == 1
    assert summary_stats(matches)[EmailCategory.WORK] == 0


def test_categorizer_surface(make_email):
    categorizer = KeywordEmailCategorizer()
    result = categorizer.categorize_email(make_email(subject="Your order has shipped", snippet="delivery soon"))
    assert result.label == "shopping"
    assert result.reasoning.startswith("Matched keywords: ")

    assert "other" in categorizer.available_labels()
    assert categorizer.label_colors()["spam"] is None
    assert categorizer.create_default_config() is None
