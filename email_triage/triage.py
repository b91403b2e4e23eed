from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .categorizer import CategorizedEmail, group_emails_by_label, label_stats
from .config import AppConfig
from .mail_client import EmailMessage, MailClient
from .utils import ensure_dir, extract_name, truncate_text, utc_now

logger = logging.getLogger("email_triage.triage")


def _pretty(label: str) -> str:
    return label.replace("_", " ").upper()


def apply_labels(
    client: MailClient,
    grouped: Mapping[str, List[CategorizedEmail]],
    colors: Optional[Mapping[str, Optional[str]]] = None,
    *,
    continue_on_error: bool = True,
) -> Tuple[Dict[str, int], Dict[str, str]]:
    """Get-or-create each label and add it to the messages grouped under it.

    Returns (applied counts per label, error message per failed label). With
    continue_on_error=False the first failure propagates.
    """
    colors = colors or {}
    applied: Dict[str, int] = {}
    failed: Dict[str, str] = {}
    for label_name, items in grouped.items():
        if not items:
            continue
        try:
            logger.info("Applying %r to %d email(s)", label_name, len(items))
            label = client.get_or_create_label(label_name, colors.get(label_name))
            client.add_label_to_messages([item.email.id for item in items], label.id)
            applied[label_name] = len(items)
        except Exception as exc:
            if not continue_on_error:
                raise
            logger.error("Failed to apply label %r: %s", label_name, exc)
            failed[label_name] = str(exc)
    return applied, failed


def categorize_and_label(
    client: MailClient,
    categorizer: Any,
    emails: List[EmailMessage],
    *,
    continue_on_error: bool = True,
) -> Dict[str, Any]:
    """Categorize `emails` and write the chosen labels back to the provider."""
    categorized = categorizer.categorize_emails(emails)
    grouped = group_emails_by_label(categorized)
    applied, failed = apply_labels(
        client, grouped, categorizer.label_colors(), continue_on_error=continue_on_error
    )
    stats = label_stats(categorized)
    for label, count in stats.items():
        logger.info("  %s: %d email(s)", _pretty(label), count)
    return {
        "fetched": len(emails),
        "categorized": categorized,
        "grouped": grouped,
        "stats": stats,
        "applied": applied,
        "failed": failed,
    }


def run_once(config: AppConfig, client: MailClient, categorizer: Any) -> Dict[str, Any]:
    """One-shot batch: fetch unread mail, categorize it and apply labels."""
    categorizer.create_default_config()

    logger.info("Initializing %s client", client.provider or config.email_provider)
    client.initialize()

    emails = client.get_unread_messages(config.app.max_results)
    logger.info("Found %d unread emails", len(emails))
    if not emails:
        return {
            "provider": config.email_provider,
            "fetched": 0,
            "categorized": [],
            "grouped": {},
            "stats": {},
            "applied": {},
            "failed": {},
        }

    logger.info("Categorizing emails (each email is analysed separately)")
    report = categorize_and_label(client, categorizer, emails, continue_on_error=False)
    report["provider"] = config.email_provider
    return report


def render_report(report: Mapping[str, Any], descriptions: Mapping[str, str]) -> str:
    lines = ["# Email categorization report", ""]
    lines.append(f"- provider: {report.get('provider')}")
    lines.append(f"- fetched: {report.get('fetched', 0)}")
    lines.append("")
    stats: Mapping[str, int] = report.get("stats") or {}
    if not stats:
        lines.append("No unread emails found.")
        return "\n".join(lines) + "\n"

    lines.append("## Summary")
    lines.append("")
    for label, count in stats.items():
        if count > 0:
            lines.append(f"- **{_pretty(label)}**: {count} emails")
    failed: Mapping[str, str] = report.get("failed") or {}
    for label, error in failed.items():
        lines.append(f"- failed to apply {label}: {error}")
    lines.append("")

    lines.append("## Detailed breakdown")
    grouped: Mapping[str, List[CategorizedEmail]] = report.get("grouped") or {}
    for label, items in grouped.items():
        if not items:
            continue
        lines.append("")
        lines.append(f"### {_pretty(label)} ({len(items)} emails)")
        lines.append(f"Description: {descriptions.get(label, '')}")
        lines.append("")
        for item in items:
            lines.append(f"- {truncate_text(item.email.subject, 60)}")
            lines.append(f"  - From: {extract_name(item.email.sender)}")
            lines.append(f"  - Confidence: {item.confidence * 100:.1f}%")
            lines.append(f"  - Reasoning: {item.reasoning}")
    return "\n".join(lines) + "\n"


def write_report(output_dir: Path, name: str, content: str) -> Path:
    out_dir = ensure_dir(output_dir)
    stamp = utc_now().strftime("%Y%m%d-%H%M%S")
    path = out_dir / f"email_triage_{name}_{stamp}.md"
    path.write_text(content, encoding="utf-8")
    return path
