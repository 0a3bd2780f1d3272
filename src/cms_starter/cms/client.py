"""Payload CMS REST client used to wait for the deployed service and seed it."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from ..errors import ProvisioningError
from ..orchestrator.polling import await_ready

logger = logging.getLogger(__name__)

# 2xx 或鉴权拒绝都说明 Payload 已在响应请求
AUTH_STATUS_CODES = (401, 403)


class CMSAPIError(ProvisioningError):
    """Raised when the CMS rejects a request or answers unexpectedly."""


def lexical_paragraph(text: str) -> Dict[str, Any]:
    """Minimal Lexical rich-text document holding one paragraph."""
    return {
        "root": {
            "children": [
                {
                    "children": [
                        {
                            "detail": 0,
                            "format": 0,
                            "mode": "normal",
                            "style": "",
                            "text": text,
                            "type": "text",
                            "version": 1,
                        }
                    ],
                    "direction": "ltr",
                    "format": "",
                    "indent": 0,
                    "type": "paragraph",
                    "version": 1,
                }
            ],
            "direction": "ltr",
            "format": "",
            "indent": 0,
            "type": "root",
            "version": 1,
        }
    }


class PayloadClient:
    """Talks to one deployed Payload instance."""

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: int = 15,
        readiness_path: str = "/api/users",
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.readiness_path = readiness_path
        self.token: Optional[str] = None

    def probe(self) -> bool:
        """One readiness check; connection errors propagate to the poller."""
        response = self.session.get(
            f"{self.base_url}{self.readiness_path}",
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        status = response.status_code
        return 200 <= status < 300 or status in AUTH_STATUS_CODES

    def wait_ready(
        self,
        max_attempts: int = 60,
        interval: float = 5.0,
        initial_delay: float = 180.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> int:
        return await_ready(
            self.probe,
            max_attempts=max_attempts,
            interval=interval,
            initial_delay=initial_delay,
            description="Payload CMS",
            sleep=sleep,
            clock=clock,
        )

    def authenticate(self, email: str, password: str) -> str:
        response = self._post("/api/users/login", {"email": email, "password": password})
        if not response.ok:
            raise CMSAPIError(
                f"Payload authentication failed: {response.status_code} {response.text[:300]}"
            )
        token = response.json().get("token")
        if not token:
            raise CMSAPIError("No token returned from Payload authentication")
        self.token = token
        return token

    def create_page(
        self,
        title: str,
        slug: str,
        body: Dict[str, Any],
        show_in_menu: bool = True,
        menu_order: Optional[int] = None,
    ) -> str:
        """Create a page and return its id. Requires `authenticate` first."""
        if not self.token:
            raise CMSAPIError("Not authenticated with Payload")
        page: Dict[str, Any] = {
            "title": title,
            "slug": slug,
            "showInMenu": show_in_menu,
            "body": body,
        }
        if menu_order is not None:
            page["menuOrder"] = menu_order
        response = self._post("/api/pages", page, headers={"Authorization": f"JWT {self.token}"})
        if not response.ok:
            raise CMSAPIError(f"Failed to create page: {response.status_code} {response.text[:300]}")
        doc = response.json().get("doc") or {}
        if not doc.get("id"):
            raise CMSAPIError("No page ID returned from Payload")
        logger.info("📝 Created page '%s' (%s)", title, doc["id"])
        return str(doc["id"])

    def _post(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        try:
            return self.session.post(
                f"{self.base_url}{path}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise CMSAPIError(f"Request to {path} failed: {exc}") from exc
