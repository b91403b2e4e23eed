from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, List

import msal  # type: ignore[import]
from msal_extensions import FilePersistence, PersistedTokenCache  # type: ignore[import]
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from .config import GmailConfig, OutlookConfig
from .utils import ensure_dir, load_env_file

logger = logging.getLogger("email_triage.auth")

RESERVED_SCOPES = {"openid", "profile", "offline_access"}
GRAPH_DEFAULT_SCOPE = "https://graph.microsoft.com/.default"


# -----------------------------
# Gmail (installed-app OAuth)
# -----------------------------


def load_gmail_credentials(gmail: GmailConfig, base_dir: Path | None = None) -> Credentials:
    """Return valid Gmail credentials, running the browser consent flow if needed.

    The authorized-user token is cached in `gmail.token_path`; an expired token
    with a refresh token is refreshed in place.
    """
    base = base_dir or Path.cwd()
    token_path = base / Path(gmail.token_path).expanduser()
    creds_path = base / Path(gmail.credentials_path).expanduser()

    creds = None
    if token_path.exists():
        creds = Credentials.from_authorized_user_file(str(token_path), gmail.scopes)

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        logger.info("Refreshing Gmail credentials")
        creds.refresh(Request())
    else:
        if not creds_path.exists():
            raise FileNotFoundError(
                f"Unable to load Gmail client secrets from {creds_path}. "
                "Create OAuth desktop credentials in Google Cloud Console and save them as credentials.json."
            )
        logger.info("No usable Gmail token, starting OAuth consent flow")
        flow = InstalledAppFlow.from_client_secrets_file(str(creds_path), gmail.scopes)
        creds = flow.run_local_server(port=0)

    ensure_dir(token_path.parent)
    token_path.write_text(creds.to_json(), encoding="utf-8")
    logger.info("Gmail token stored to %s", token_path)
    return creds


# -----------------------------
# Outlook (MSAL)
# -----------------------------


def _build_cache(cache_path: Path) -> PersistedTokenCache:
    persistence = FilePersistence(str(cache_path))
    cache = PersistedTokenCache(persistence)
    return cache


def _authority(outlook: OutlookConfig) -> str:
    base = outlook.authority_base.rstrip("/")
    return f"{base}/{outlook.tenant_id}"


def _require_client_id(outlook: OutlookConfig) -> str:
    if not outlook.client_id:
        raise RuntimeError(
            "Outlook client_id is not configured. Register an app in Azure Portal and set "
            "[outlook] client_id in config.toml (or MS_GRAPH_CLIENT_ID)."
        )
    return outlook.client_id


def build_public_client(outlook: OutlookConfig, cache_path: Path) -> msal.PublicClientApplication:
    client_id = _require_client_id(outlook)
    cache_path = cache_path.expanduser()
    ensure_dir(cache_path.parent)
    cache = _build_cache(cache_path)
    return msal.PublicClientApplication(
        client_id=client_id,
        authority=_authority(outlook),
        token_cache=cache,
    )


def build_confidential_client(
    outlook: OutlookConfig, cache_path: Path
) -> msal.ConfidentialClientApplication:
    cache_path = cache_path.expanduser()
    ensure_dir(cache_path.parent)
    cache = _build_cache(cache_path)
    load_env_file()
    client_secret = os.environ.get(outlook.client_secret_env)
    if not client_secret:
        raise RuntimeError(
            f"Missing client secret env var: {outlook.client_secret_env}. "
            "Set it before running (do not put secrets in config.toml)."
        )
    return msal.ConfidentialClientApplication(
        client_id=_require_client_id(outlook),
        authority=_authority(outlook),
        client_credential=client_secret,
        token_cache=cache,
    )


def clean_scopes(scopes: Iterable[str]) -> List[str]:
    scopes_clean = []
    for s in scopes:
        if s.lower() in RESERVED_SCOPES:
            logger.warning("Ignoring reserved scope in config: %s", s)
            continue
        scopes_clean.append(s)
    return scopes_clean


def acquire_delegated_token(
    app: msal.PublicClientApplication,
    scopes: Iterable[str],
) -> dict | None:
    scopes_clean = clean_scopes(scopes)

    accounts = app.get_accounts()
    result: dict | None = None
    if accounts:
        logger.debug("Attempting silent token acquisition for %s", accounts[0].get("username"))
        result = app.acquire_token_silent(scopes_clean, account=accounts[0])

    if not result:
        logger.info("No suitable cached token, starting device code authentication")
        flow = app.initiate_device_flow(scopes=scopes_clean)
        if "user_code" not in flow:
            logger.error("Failed to start device flow: %s", flow.get("error_description"))
            return None
        print("\nTo authenticate with Outlook/Office 365:")
        print(f"1. Go to: {flow.get('verification_uri', 'https://microsoft.com/devicelogin')}")
        print(f"2. Enter code: {flow['user_code']}")
        print("3. Sign in with your Microsoft account\n")
        result = app.acquire_token_by_device_flow(flow)

    if not result or "access_token" not in result:
        logger.error(
            "Failed to acquire delegated token: %s",
            (result or {}).get("error_description"),
        )
        return None
    return result


def acquire_application_token(
    app: msal.ConfidentialClientApplication,
) -> dict | None:
    # Uses the Graph .default scope set, representing app permissions granted in the portal.
    result = app.acquire_token_for_client(scopes=[GRAPH_DEFAULT_SCOPE])
    if not result or "access_token" not in result:
        logger.error(
            "Failed to acquire application token: %s",
            (result or {}).get("error_description"),
        )
        return None
    return result


def acquire_outlook_token(outlook: OutlookConfig, base_dir: Path | None = None) -> str:
    """Return a Graph access token honouring `outlook.auth_mode`."""
    cache_path = (base_dir or Path.cwd()) / Path(outlook.token_cache_path).expanduser()
    if outlook.auth_mode == "delegated":
        app = build_public_client(outlook, cache_path)
        token = acquire_delegated_token(app, outlook.scopes)
        if not token:
            raise RuntimeError("Delegated Outlook authentication failed")
        return token["access_token"]
    if outlook.auth_mode == "application":
        if outlook.user.lower() == "me":
            raise RuntimeError(
                "Application auth cannot use /me; set [outlook] user to the mailbox address."
            )
        app = build_confidential_client(outlook, cache_path)
        token = acquire_application_token(app)
        if not token:
            raise RuntimeError("Application Outlook authentication failed")
        return token["access_token"]
    raise RuntimeError(f"Unknown auth_mode: {outlook.auth_mode}")
