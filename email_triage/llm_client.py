from __future__ import annotations

import json
import logging
import math
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import jsonschema  # type: ignore[import]

from .config import LLMConfig
from .schemas import CATEGORIZATION_OUTPUT_DESCRIPTION, LABEL_GUIDELINES
from .utils import load_env_file

logger = logging.getLogger("email_triage.llm")

_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)

SCHEMA_PATH = Path(__file__).parent / "json_schemas" / "categorization.schema.json"

PARSE_FAILURE_REASON = "Failed to parse LLM response"
SERVICE_FAILURE_REASON = "LLM service error"
FALLBACK_CONFIDENCE = 0.1


@dataclass
class CategorizationResult:
    label: str
    confidence: float
    reasoning: str
    id: Optional[str] = None


def build_categorization_prompt(
    email_content: str,
    available_labels: Sequence[str],
    label_prompts: Mapping[str, str],
) -> str:
    label_descriptions = "\n".join(
        f"- {label}: {label_prompts.get(label) or 'No description provided'}"
        for label in available_labels
    )
    guidelines = "\n".join(
        f'- "{label}" = {LABEL_GUIDELINES[label]}'
        for label in available_labels
        if label in LABEL_GUIDELINES
    )
    parts = [
        "You are an expert email categorization assistant that helps organize emails based on "
        "what action is needed. Your job is to categorize emails based on what the recipient "
        "should DO with them, not just their content topic.",
        f"Email Content:\n{email_content}",
        f"Available Categories:\n{label_descriptions}",
        "IMPORTANT CATEGORIZATION GUIDELINES:\n- Focus on ACTION REQUIRED rather than just topic"
        + (f"\n{guidelines}" if guidelines else ""),
        CATEGORIZATION_OUTPUT_DESCRIPTION,
    ]
    return "\n\n".join(parts)


def parse_json_lenient(text: str) -> Dict[str, Any]:
    """Parse model output that *should* be JSON.

    - Strips code fences.
    - Tries full JSON parse.
    - Falls back to extracting the first {...} block.
    """

    raw = (text or "").strip()
    if not raw:
        raise RuntimeError("Model returned empty output")

    if raw.startswith("```"):
        raw = raw.strip("`")
        raw = raw.lstrip().removeprefix("json").lstrip()

    try:
        parsed = json.loads(raw)
        if not isinstance(parsed, dict):
            raise RuntimeError("Model JSON was not an object")
        return parsed
    except json.JSONDecodeError:
        match = _JSON_RE.search(raw)
        if not match:
            logger.error("Could not find JSON object in model output: %s", raw[:1000])
            raise RuntimeError("Model returned invalid JSON")
        try:
            parsed = json.loads(match.group(0))
            if not isinstance(parsed, dict):
                raise RuntimeError("Model JSON was not an object")
            return parsed
        except json.JSONDecodeError as exc:
            logger.error("Failed to parse extracted JSON. Raw=%s", raw[:1000])
            raise RuntimeError("Model returned invalid JSON") from exc


_SCHEMA_CACHE: Dict[str, Any] = {}


def _categorization_schema() -> Dict[str, Any]:
    if "schema" not in _SCHEMA_CACHE:
        _SCHEMA_CACHE["schema"] = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    return _SCHEMA_CACHE["schema"]


def _fallback(available_labels: Sequence[str], reason: str) -> CategorizationResult:
    label = available_labels[0] if available_labels else "unknown"
    return CategorizationResult(label=label, confidence=FALLBACK_CONFIDENCE, reasoning=reason)


class LLMClient:
    """Small wrapper around the Anthropic Messages API or an OpenAI-style chat API.

    Categorization never raises for a single email: provider errors and
    unusable replies turn into a low-confidence fallback on the first label.
    `sdk_client` can be injected (tests, custom transports).
    """

    def __init__(self, config: LLMConfig, sdk_client: Any = None, sleep=time.sleep) -> None:
        self.config = config
        self.provider = (config.provider or "").strip().lower()
        self._sdk_client = sdk_client
        self._sleep = sleep

    # -----------------------------
    # Provider plumbing
    # -----------------------------

    def _api_key(self) -> str:
        load_env_file()
        env_name = self.config.resolved_api_key_env()
        api_key = os.environ.get(env_name)
        if not api_key:
            raise RuntimeError(
                f"Environment variable {env_name} is not set. "
                f"Cannot authenticate for LLM provider '{self.provider}' (API key missing)."
            )
        return api_key

    @property
    def sdk_client(self) -> Any:
        if self._sdk_client is None:
            if self.provider == "anthropic":
                from anthropic import Anthropic

                kwargs: Dict[str, Any] = {"api_key": self._api_key()}
                if self.config.base_url:
                    kwargs["base_url"] = self.config.base_url
                self._sdk_client = Anthropic(**kwargs)
            elif self.provider in {"openai", "openai-compatible"}:
                from openai import OpenAI

                kwargs = {"api_key": self._api_key()}
                if self.config.base_url:
                    kwargs["base_url"] = self.config.base_url
                self._sdk_client = OpenAI(**kwargs)
            else:
                raise ValueError(
                    f"Unknown LLM provider '{self.config.provider}'. "
                    "Supported: anthropic, openai, openai-compatible"
                )
        return self._sdk_client

    def complete(self, prompt: str) -> str:
        """Send a single user prompt and return the text reply."""
        if self.provider == "anthropic":
            logger.debug("Calling Anthropic model %s", self.config.model)
            response = self.sdk_client.messages.create(
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
            texts = [
                getattr(block, "text", "")
                for block in response.content or []
                if getattr(block, "type", None) == "text"
            ]
            return "".join(texts)

        logger.debug(
            "Calling OpenAI model %s (provider=%s, base_url=%s)",
            self.config.model,
            self.provider,
            self.config.base_url or "https://api.openai.com/v1",
        )
        completion = self.sdk_client.chat.completions.create(
            model=self.config.model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        return completion.choices[0].message.content or ""

    # -----------------------------
    # Categorization
    # -----------------------------

    def categorize_email(
        self,
        email_content: str,
        available_labels: Sequence[str],
        label_prompts: Mapping[str, str],
    ) -> CategorizationResult:
        prompt = build_categorization_prompt(email_content, available_labels, label_prompts)
        self.sdk_client  # missing key or unknown provider raises here, not as a fallback
        try:
            text = self.complete(prompt)
        except Exception as exc:
            logger.error("Error calling LLM: %s", exc)
            return _fallback(available_labels, SERVICE_FAILURE_REASON)

        try:
            data = parse_json_lenient(text)
            jsonschema.validate(instance=data, schema=_categorization_schema())
        except (RuntimeError, jsonschema.ValidationError) as exc:
            logger.warning("Unusable LLM reply (%s): %s", exc, (text or "")[:300])
            return _fallback(available_labels, PARSE_FAILURE_REASON)

        label = str(data["label"]).strip()
        if available_labels and label not in available_labels:
            logger.warning("LLM chose unknown label %r; falling back", label)
            return _fallback(available_labels, PARSE_FAILURE_REASON)

        confidence = float(data["confidence"])
        if not math.isfinite(confidence):
            logger.warning("LLM returned non-finite confidence %r; falling back", data["confidence"])
            return _fallback(available_labels, PARSE_FAILURE_REASON)
        confidence = min(max(confidence, 0.0), 1.0)
        return CategorizationResult(label=label, confidence=confidence, reasoning=str(data["reasoning"]))

    def batch_categorize_emails(
        self,
        emails: Sequence[Mapping[str, str]],
        available_labels: Sequence[str],
        label_prompts: Mapping[str, str],
    ) -> List[CategorizationResult]:
        """Categorize `[{"id": ..., "content": ...}]` one at a time with a fixed delay."""
        results: List[CategorizationResult] = []
        for index, item in enumerate(emails):
            if index and self.config.request_delay_seconds > 0:
                self._sleep(self.config.request_delay_seconds)
            result = self.categorize_email(item["content"], available_labels, label_prompts)
            result.id = item["id"]
            results.append(result)
        return results
