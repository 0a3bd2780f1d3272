"""Credential resolution and verification.

Tokens are resolved once, at process start, in this order:

1. environment variable / config file (already applied by `load_config`)
2. stored credentials (~/.config/cms-starter/credentials.json)
3. tokens written by the official Railway and GitHub CLIs
4. interactive prompt (the answer is saved to the credential store)
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Dict, Optional

import requests

from .config import AppConfig
from .errors import PreflightError
from .interaction import InputType, InteractionRequest, QuestionCategory, UserInteractionHandler
from .paths import CREDENTIALS_FILE, GH_CLI_HOSTS, RAILWAY_CLI_CONFIG

logger = logging.getLogger(__name__)

RAILWAY_API_URL = "https://backboard.railway.app/graphql/v2"
GITHUB_API_URL = "https://api.github.com"

# 存储文件中的字段名
_STORE_KEYS = {"railway": "railwayToken", "github": "githubToken"}


class CredentialError(PreflightError):
    """Raised when a token is missing or rejected."""


class CredentialStore:
    """JSON file of saved tokens, readable by the owner only."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path else CREDENTIALS_FILE

    def load(self) -> Dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("⚠️  Ignoring unreadable credential file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, provider: str) -> Optional[str]:
        return self.load().get(_STORE_KEYS[provider]) or None

    def save(self, provider: str, token: str) -> None:
        data = self.load()
        data[_STORE_KEYS[provider]] = token
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # 仅所有者可读写
        fd = os.open(str(self.path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
        os.chmod(self.path, 0o600)
        logger.debug("Saved %s token to %s", provider, self.path)


def read_railway_cli_token(path: Optional[Path] = None) -> Optional[str]:
    """Token from `railway login` (~/.railway/config.json, user.token)."""
    path = Path(path) if path else RAILWAY_CLI_CONFIG
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError):
        return None
    user = data.get("user") if isinstance(data, dict) else None
    token = user.get("token") if isinstance(user, dict) else None
    return token or None


def read_gh_cli_token(path: Optional[Path] = None) -> Optional[str]:
    """Token from `gh auth login` (~/.config/gh/hosts.yml, oauth_token)."""
    path = Path(path) if path else GH_CLI_HOSTS
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        return None
    match = re.search(r"oauth_token:\s*(\S+)", content)
    return match.group(1).strip() if match else None


def resolve_credentials(
    config: AppConfig,
    store: Optional[CredentialStore] = None,
    interaction: Optional[UserInteractionHandler] = None,
    railway_cli_path: Optional[Path] = None,
    gh_hosts_path: Optional[Path] = None,
) -> Dict[str, str]:
    """Fill `config.credentials` and return where each token came from.

    Raises:
        CredentialError: if a token is still missing after every source,
            including the prompt when an interaction handler is given.
    """
    store = store or CredentialStore()
    cli_readers = {
        "railway": lambda: read_railway_cli_token(railway_cli_path),
        "github": lambda: read_gh_cli_token(gh_hosts_path),
    }
    prompts = {
        "railway": "Railway API token (https://railway.app/account/tokens)",
        "github": "GitHub token with repo + workflow scopes (https://github.com/settings/tokens)",
    }

    sources: Dict[str, str] = {}
    for provider in ("railway", "github"):
        attr = f"{provider}_token"
        token = getattr(config.credentials, attr)
        source = "environment"

        if not token:
            token, source = store.get(provider), "stored"
        if not token:
            token, source = cli_readers[provider](), f"{provider} cli"
        if not token and interaction is not None:
            response = interaction.ask(InteractionRequest(
                question=prompts[provider],
                input_type=InputType.SECRET,
                key=attr,
                category=QuestionCategory.CREDENTIALS,
                validator=lambda value: None if value else "A token is required",
            ))
            if not response.cancelled and response.value:
                token, source = response.value, "prompt"
                store.save(provider, token)

        if not token:
            raise CredentialError(
                f"No {provider.capitalize()} token found. Set {provider.upper()}_TOKEN, "
                f"log in with the {provider} CLI, or run interactively."
            )
        setattr(config.credentials, attr, token)
        sources[provider] = source
        logger.debug("Using %s token from %s", provider, source)

    return sources


def verify_railway_token(token: str, session: Optional[requests.Session] = None) -> str:
    """Return the account email for `token` or raise CredentialError."""
    session = session or requests.Session()
    try:
        response = session.post(
            RAILWAY_API_URL,
            json={"query": "query { me { email } }"},
            headers={"Authorization": f"Bearer {token}"},
            timeout=15,
        )
    except requests.RequestException as exc:
        raise CredentialError(f"Could not reach Railway: {exc}") from exc
    if not response.ok:
        raise CredentialError(f"Invalid Railway token (HTTP {response.status_code})")
    payload = response.json()
    if payload.get("errors"):
        raise CredentialError(f"Invalid Railway token: {payload['errors'][0].get('message')}")
    me = (payload.get("data") or {}).get("me") or {}
    return me.get("email") or "unknown"


def verify_github_token(token: str, session: Optional[requests.Session] = None) -> str:
    """Return the GitHub login for `token` or raise CredentialError."""
    session = session or requests.Session()
    try:
        response = session.get(
            f"{GITHUB_API_URL}/user",
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
            },
            timeout=15,
        )
    except requests.RequestException as exc:
        raise CredentialError(f"Could not reach GitHub: {exc}") from exc
    if not response.ok:
        raise CredentialError(f"Invalid GitHub token (HTTP {response.status_code})")
    return response.json().get("login") or "unknown"
