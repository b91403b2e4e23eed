from __future__ import annotations

# One-line hints for the built-in labels; custom labels rely on their own prompt.
LABEL_GUIDELINES = {
    "to_respond": "Someone is asking me something or needs my input",
    "fyi": "Important to know but no response needed",
    "comment": "Collaborative tool notifications (Google Docs, Slack, etc.)",
    "notification": "System/app automated updates",
    "meeting_update": "Anything calendar/meeting related",
    "awaiting_reply": "I'm waiting for someone else's response",
    "actioned": "Issue is resolved/completed",
    "marketing": "Promotional/sales content",
}

CATEGORIZATION_OUTPUT_DESCRIPTION = """Please respond with a JSON object containing:
- "label": the most appropriate category from the list above
- "confidence": a number between 0 and 1 indicating your confidence
- "reasoning": a brief explanation focusing on what action is needed

Response format:
{
  "label": "selected_label",
  "confidence": 0.95,
  "reasoning": "Brief explanation here"
}"""
