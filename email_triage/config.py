from __future__ import annotations

from dataclasses import asdict, dataclass, field
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import toml  # type: ignore[import]

logger = logging.getLogger("email_triage.config")

SUPPORTED_PROVIDERS = ("gmail", "outlook")
DEFAULT_CONFIG_NAME = "config.toml"


@dataclass
class AppSettings:
    email_provider: str = "gmail"  # gmail | outlook
    max_results: int = 50
    labels_path: str = "labels-config.json"
    state_dir: str = "./data"
    output_dir: str = "./output"


@dataclass
class MonitoringConfig:
    enabled: bool = False
    poll_interval: float = 5  # minutes
    max_emails_per_check: int = 10
    log_activity: bool = True
    last_check_path: str = ".last-email-check"


@dataclass
class WebhookConfig:
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 3000
    secret: Optional[str] = None
    gmail_topic: Optional[str] = None
    outlook_notification_url: Optional[str] = None
    outlook_validation_token: Optional[str] = None
    # Never more than 4320 (3 days); larger values are clamped.
    subscription_expiration_minutes: int = 4320
    recent_window_minutes: int = 10
    recent_fetch_count: int = 20


@dataclass
class LLMConfig:
    provider: str = "anthropic"  # anthropic | openai | openai-compatible | keywords
    model: str = "claude-3-haiku-20240307"
    max_tokens: int = 300
    temperature: float = 0.0
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None
    request_delay_seconds: float = 0.1
    body_max_chars: int = 1000

    def resolved_api_key_env(self) -> str:
        if self.api_key_env:
            return self.api_key_env
        if self.provider.strip().lower() in {"openai", "openai-compatible"}:
            return "OPENAI_API_KEY"
        return "ANTHROPIC_API_KEY"


@dataclass
class GmailConfig:
    credentials_path: str = "credentials.json"
    token_path: str = "token.json"
    scopes: List[str] = field(
        default_factory=lambda: [
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/gmail.labels",
            "https://www.googleapis.com/auth/gmail.modify",
        ]
    )
    label_delay_seconds: float = 0.05
    unread_query: str = "is:unread"


@dataclass
class OutlookConfig:
    client_id: Optional[str] = None
    tenant_id: str = "organizations"
    authority_base: str = "https://login.microsoftonline.com"
    auth_mode: str = "delegated"  # delegated | application
    client_secret_env: str = "MS_GRAPH_CLIENT_SECRET"
    scopes: List[str] = field(
        default_factory=lambda: ["Mail.Read", "Mail.ReadWrite", "MailboxSettings.Read"]
    )
    token_cache_path: str = "./data/msal_token_cache.bin"
    user: str = "me"  # "me" for delegated, userPrincipalName for application
    category_delay_seconds: float = 0.1
    default_category_color: str = "preset0"


@dataclass
class AppConfig:
    app: AppSettings = field(default_factory=AppSettings)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    webhooks: WebhookConfig = field(default_factory=WebhookConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    gmail: GmailConfig = field(default_factory=GmailConfig)
    outlook: OutlookConfig = field(default_factory=OutlookConfig)
    config_path: Optional[Path] = None

    @property
    def email_provider(self) -> str:
        return self.app.email_provider

    def base_dir(self) -> Path:
        """Directory relative paths in the config are resolved against."""
        if self.config_path is not None:
            return self.config_path.parent
        return Path.cwd()

    def resolve(self, path: str | Path) -> Path:
        p = Path(path).expanduser()
        return p if p.is_absolute() else self.base_dir() / p


def _resolve_config_path(path: Optional[str | Path]) -> Optional[Path]:
    """
    Resolve a user-supplied config path:
    - allow pointing at a directory (uses config.toml inside)
    - default to ./config.toml
    Returns None when the file does not exist.
    """
    supplied = Path(path).expanduser() if path else Path(DEFAULT_CONFIG_NAME)
    cfg_path = supplied / DEFAULT_CONFIG_NAME if supplied.is_dir() else supplied
    if cfg_path.exists():
        return cfg_path.resolve()
    if path:
        logger.warning("Config file %s not found, using default configuration", cfg_path)
    return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_app(raw: Mapping[str, Any]) -> AppSettings:
    d = AppSettings()
    provider = os.getenv("EMAIL_PROVIDER", raw.get("email_provider", d.email_provider))
    return AppSettings(
        email_provider=str(provider).strip().lower(),
        max_results=int(raw.get("max_results", d.max_results)),
        labels_path=str(raw.get("labels_path", d.labels_path)),
        state_dir=str(raw.get("state_dir", d.state_dir)),
        output_dir=str(raw.get("output_dir", d.output_dir)),
    )


def _parse_monitoring(raw: Mapping[str, Any]) -> MonitoringConfig:
    d = MonitoringConfig()
    return MonitoringConfig(
        enabled=_as_bool(raw.get("enabled", d.enabled)),
        poll_interval=float(raw.get("poll_interval", d.poll_interval)),
        max_emails_per_check=int(raw.get("max_emails_per_check", d.max_emails_per_check)),
        log_activity=_as_bool(raw.get("log_activity", d.log_activity)),
        last_check_path=str(raw.get("last_check_path", d.last_check_path)),
    )


def _parse_webhooks(raw: Mapping[str, Any]) -> WebhookConfig:
    d = WebhookConfig()
    return WebhookConfig(
        enabled=_as_bool(raw.get("enabled", d.enabled)),
        host=str(raw.get("host", d.host)),
        port=int(raw.get("port", d.port) or d.port),
        secret=_optional_str(os.getenv("WEBHOOK_SECRET", raw.get("secret"))),
        gmail_topic=_optional_str(raw.get("gmail_topic")),
        outlook_notification_url=_optional_str(raw.get("outlook_notification_url")),
        outlook_validation_token=_optional_str(raw.get("outlook_validation_token")),
        subscription_expiration_minutes=int(
            raw.get("subscription_expiration_minutes", d.subscription_expiration_minutes)
        ),
        recent_window_minutes=int(raw.get("recent_window_minutes", d.recent_window_minutes)),
        recent_fetch_count=int(raw.get("recent_fetch_count", d.recent_fetch_count)),
    )


def _parse_llm(raw: Mapping[str, Any]) -> LLMConfig:
    d = LLMConfig()
    return LLMConfig(
        provider=str(os.getenv("LLM_PROVIDER", raw.get("provider", d.provider))).strip().lower(),
        model=str(os.getenv("LLM_MODEL", raw.get("model", d.model))),
        max_tokens=int(raw.get("max_tokens", d.max_tokens)),
        temperature=float(raw.get("temperature", d.temperature)),
        api_key_env=_optional_str(raw.get("api_key_env")),
        base_url=_optional_str(raw.get("base_url")),
        request_delay_seconds=float(raw.get("request_delay_seconds", d.request_delay_seconds)),
        body_max_chars=int(raw.get("body_max_chars", d.body_max_chars)),
    )


def _parse_gmail(raw: Mapping[str, Any]) -> GmailConfig:
    d = GmailConfig()
    return GmailConfig(
        credentials_path=str(raw.get("credentials_path", d.credentials_path)),
        token_path=str(raw.get("token_path", d.token_path)),
        scopes=[str(s) for s in raw.get("scopes", d.scopes)],
        label_delay_seconds=float(raw.get("label_delay_seconds", d.label_delay_seconds)),
        unread_query=str(raw.get("unread_query", d.unread_query)),
    )


def _parse_outlook(raw: Mapping[str, Any]) -> OutlookConfig:
    d = OutlookConfig()
    return OutlookConfig(
        client_id=_optional_str(os.getenv("MS_GRAPH_CLIENT_ID", raw.get("client_id"))),
        tenant_id=str(raw.get("tenant_id", d.tenant_id)),
        authority_base=str(raw.get("authority_base", d.authority_base)),
        auth_mode=str(raw.get("auth_mode", d.auth_mode)).strip().lower(),
        client_secret_env=str(raw.get("client_secret_env", d.client_secret_env)),
        scopes=[str(s) for s in raw.get("scopes", d.scopes)],
        token_cache_path=str(raw.get("token_cache_path", d.token_cache_path)),
        user=str(raw.get("user", d.user)),
        category_delay_seconds=float(raw.get("category_delay_seconds", d.category_delay_seconds)),
        default_category_color=str(raw.get("default_category_color", d.default_category_color)),
    )


def config_from_dict(raw: Mapping[str, Any], config_path: Optional[Path] = None) -> AppConfig:
    cfg = AppConfig(
        app=_parse_app(raw.get("app", {})),
        monitoring=_parse_monitoring(raw.get("monitoring", {})),
        webhooks=_parse_webhooks(raw.get("webhooks", {})),
        llm=_parse_llm(raw.get("llm", {})),
        gmail=_parse_gmail(raw.get("gmail", {})),
        outlook=_parse_outlook(raw.get("outlook", {})),
        config_path=config_path,
    )
    if cfg.app.email_provider not in SUPPORTED_PROVIDERS:
        raise ValueError(
            f"Unsupported email provider: {cfg.app.email_provider}. "
            f"Supported: {', '.join(SUPPORTED_PROVIDERS)}"
        )
    return cfg


def load_config(path: Optional[str | Path] = None) -> AppConfig:
    cfg_path = _resolve_config_path(path)
    if cfg_path is None:
        logger.info("No %s found, using default configuration (Gmail)", DEFAULT_CONFIG_NAME)
        return config_from_dict({})
    raw = toml.load(str(cfg_path))
    return config_from_dict(raw, config_path=cfg_path)


def config_to_dict(config: AppConfig) -> Dict[str, Any]:
    """Serialisable view of the config; None values are dropped (TOML has no null)."""

    def _clean(section: Any) -> Dict[str, Any]:
        return {k: v for k, v in asdict(section).items() if v is not None}

    return {
        "app": _clean(config.app),
        "monitoring": _clean(config.monitoring),
        "webhooks": _clean(config.webhooks),
        "llm": _clean(config.llm),
        "gmail": _clean(config.gmail),
        "outlook": _clean(config.outlook),
    }


def write_default_config(path: str | Path = DEFAULT_CONFIG_NAME) -> bool:
    """Write a default config.toml. Returns False when the file already exists."""
    p = Path(path).expanduser()
    if p.exists():
        return False
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        toml.dump(config_to_dict(AppConfig()), f)
    logger.info("Created default %s", p)
    return True
