"""GitHub REST client: repositories, Actions secrets, dispatches and workflow runs."""

from __future__ import annotations

import base64
import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import requests
from nacl import encoding, public

from ..errors import ProvisioningError
from ..orchestrator.polling import poll_until

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"


class GitHubAPIError(ProvisioningError):
    """Raised when a GitHub call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


@dataclass
class GitHubRepo:
    owner: str
    name: str
    html_url: str
    clone_url: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class WorkflowRun:
    """Latest state of one Actions run."""
    status: str
    conclusion: Optional[str]
    html_url: str
    created_at: str = ""

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    @property
    def success(self) -> bool:
        return self.completed and self.conclusion == "success"


def encrypt_secret(public_key: str, value: str) -> str:
    """Seal `value` for the repository public key (libsodium sealed box)."""
    key = public.PublicKey(public_key.encode("utf-8"), encoding.Base64Encoder())
    sealed = public.SealedBox(key).encrypt(value.encode("utf-8"))
    return base64.b64encode(sealed).decode("utf-8")


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _isoformat_utc(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class GitHubClient:
    """GitHub REST v3 client bound to one token."""

    def __init__(
        self,
        token: str,
        session: Optional[requests.Session] = None,
        api_url: str = GITHUB_API_URL,
        timeout: int = 30,
        use_gh_cli: Optional[bool] = None,
    ):
        if not token:
            raise ValueError("GitHub token is required")
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.use_gh_cli = use_gh_cli
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })
        self._login: Optional[str] = None

    def _request(self, method: str, path: str, expected: tuple = (200,), **kwargs: Any) -> requests.Response:
        url = f"{self.api_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise GitHubAPIError(f"GitHub request {method} {path} failed: {exc}") from exc
        if response.status_code not in expected:
            try:
                detail = response.json().get("message", "")
            except ValueError:
                detail = response.text[:300]
            raise GitHubAPIError(
                f"GitHub {method} {path} returned {response.status_code}: {detail}",
                status_code=response.status_code,
            )
        return response

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def get_login(self) -> str:
        if self._login is None:
            self._login = self._request("GET", "/user").json()["login"]
        return self._login

    def create_repo(
        self,
        name: str,
        private: bool = True,
        description: str = "",
        on_created: Optional[Callable[[str, str], None]] = None,
    ) -> GitHubRepo:
        """Create `name` under the authenticated user.

        `on_created(owner, name)` fires once GitHub answers 201, before the
        response body is read.
        """
        owner = self.get_login()
        response = self._request(
            "POST",
            "/user/repos",
            expected=(201,),
            json={
                "name": name,
                "private": private,
                "auto_init": False,
                "description": description or "CMS project created with cms-starter",
            },
        )
        if on_created is not None:
            on_created(owner, name)
        data = response.json()
        repo = GitHubRepo(
            owner=owner,
            name=data.get("name") or name,
            html_url=data["html_url"],
            clone_url=data["clone_url"],
        )
        logger.info("📦 Created GitHub repository %s", repo.full_name)
        return repo

    def delete_repo(self, owner: str, name: str) -> None:
        self._request("DELETE", f"/repos/{owner}/{name}", expected=(204,))
        logger.info("🗑️  Deleted GitHub repository %s/%s", owner, name)

    # ------------------------------------------------------------------
    # Actions secrets
    # ------------------------------------------------------------------

    def gh_cli_available(self) -> bool:
        if self.use_gh_cli is not None:
            return self.use_gh_cli
        if shutil.which("gh") is None:
            return False
        try:
            subprocess.run(["gh", "--version"], capture_output=True, check=True)
        except (OSError, subprocess.CalledProcessError):
            return False
        return True

    def set_secrets(self, owner: str, name: str, values: Dict[str, str]) -> None:
        """Create or update repository secrets, through `gh` when it is installed."""
        if self.gh_cli_available():
            self._set_secrets_via_cli(owner, name, values)
        else:
            self._set_secrets_via_api(owner, name, values)
        logger.info("🔐 Configured %d secret(s) on %s/%s", len(values), owner, name)

    def _set_secrets_via_cli(self, owner: str, name: str, values: Dict[str, str]) -> None:
        env = os.environ.copy()
        env["GH_TOKEN"] = self.token
        for secret_name, value in values.items():
            process = subprocess.run(
                ["gh", "secret", "set", secret_name, "--repo", f"{owner}/{name}"],
                input=value,
                capture_output=True,
                text=True,
                env=env,
                check=False,
            )
            if process.returncode != 0:
                raise GitHubAPIError(
                    f"Failed to set secret {secret_name}: {process.stderr.strip()}"
                )

    def _set_secrets_via_api(self, owner: str, name: str, values: Dict[str, str]) -> None:
        key_data = self._request("GET", f"/repos/{owner}/{name}/actions/secrets/public-key").json()
        for secret_name, value in values.items():
            self._request(
                "PUT",
                f"/repos/{owner}/{name}/actions/secrets/{secret_name}",
                expected=(201, 204),
                json={
                    "encrypted_value": encrypt_secret(key_data["key"], value),
                    "key_id": key_data["key_id"],
                },
            )

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    def dispatch(
        self,
        owner: str,
        name: str,
        event_type: str,
        client_payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Fire a `repository_dispatch` event."""
        self._request(
            "POST",
            f"/repos/{owner}/{name}/dispatches",
            expected=(204,),
            json={"event_type": event_type, "client_payload": client_payload or {}},
        )
        logger.info("📣 Dispatched '%s' to %s/%s", event_type, owner, name)

    def latest_run_since(self, owner: str, name: str, since: datetime) -> Optional[WorkflowRun]:
        data = self._request(
            "GET",
            f"/repos/{owner}/{name}/actions/runs",
            params={"per_page": 10, "created": f">={_isoformat_utc(since)}"},
        ).json()
        threshold = since if since.tzinfo else since.replace(tzinfo=timezone.utc)
        # 截断到秒，与 API 的精度一致
        threshold = threshold.replace(microsecond=0)
        for run in data.get("workflow_runs", []):
            if _parse_timestamp(run["created_at"]) >= threshold:
                return WorkflowRun(
                    status=run.get("status") or "unknown",
                    conclusion=run.get("conclusion"),
                    html_url=run["html_url"],
                    created_at=run["created_at"],
                )
        return None

    def await_pipeline_run(
        self,
        owner: str,
        name: str,
        since: datetime,
        on_progress: Optional[Callable[[WorkflowRun], None]] = None,
        initial_delay: float = 5.0,
        interval: float = 10.0,
        timeout: float = 600.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> WorkflowRun:
        """Wait for the first run created at or after `since` to complete.

        Raises:
            ReadinessTimeoutError: if no run completes within `timeout` seconds.
        """
        return poll_until(
            lambda: self.latest_run_since(owner, name, since),
            lambda run: run.completed,
            interval=interval,
            timeout=timeout,
            initial_delay=initial_delay,
            on_progress=on_progress,
            description="GitHub Actions workflow",
            sleep=sleep,
            clock=clock,
        )
