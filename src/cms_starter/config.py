"""Configuration loading utilities for cms-starter."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from .paths import CONFIG_FILE, LOGS_DIR

# Load .env file if it exists
load_dotenv()

ENV_PREFIX = "CMS_STARTER_"

# Payload 字段类型（与生成的 collection 文件一致）
FIELD_TYPES = (
    "text",
    "textarea",
    "richText",
    "number",
    "date",
    "checkbox",
    "select",
    "upload",
    "relationship",
)


@dataclass
class CredentialsConfig:
    """API tokens for the platforms the pipeline talks to."""

    railway_token: Optional[str] = None
    github_token: Optional[str] = None


@dataclass
class ProvisioningConfig:
    """Knobs for the provisioning pipeline."""

    readiness_path: str = "/api/users"
    readiness_initial_delay: float = 180.0   # Railway 首次构建通常需要几分钟
    readiness_max_attempts: int = 60
    readiness_interval: float = 5.0
    workflow_initial_delay: float = 5.0
    workflow_poll_interval: float = 10.0
    workflow_timeout: float = 600.0
    live_output_lines: int = 5
    error_output_lines: int = 50
    repo_private: bool = True
    install_dependencies: bool = True
    log_dir: str = str(LOGS_DIR)


@dataclass
class AppConfig:
    """Top-level configuration."""

    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    provisioning: ProvisioningConfig = field(default_factory=ProvisioningConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        credentials_payload = payload.get("credentials", {}) or {}
        provisioning_payload = payload.get("provisioning", {}) or {}

        # 过滤掉以下划线开头的注释字段
        provisioning_payload = {k: v for k, v in provisioning_payload.items() if not k.startswith("_")}

        return cls(
            credentials=CredentialsConfig(
                **{**CredentialsConfig().__dict__, **credentials_payload}
            ),
            provisioning=ProvisioningConfig(
                **{**ProvisioningConfig().__dict__, **provisioning_payload}
            ),
        )


def _coerce(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Falls back to built-in defaults when no file exists. An explicit `path`
    that does not exist is an error.

    Environment variables (higher priority than config file):
    - RAILWAY_TOKEN: Railway API token
    - GITHUB_TOKEN: GitHub personal access token
    - CMS_STARTER_<FIELD>: any `ProvisioningConfig` field, e.g.
      CMS_STARTER_READINESS_INITIAL_DELAY=60 or CMS_STARTER_INSTALL_DEPENDENCIES=false
    """
    if path and not Path(path).is_file():
        raise FileNotFoundError(f"Could not find configuration file: {path}")

    candidate_paths = [Path(path)] if path else [CONFIG_FILE]

    config = AppConfig()
    for candidate in candidate_paths:
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            config = AppConfig.from_dict(data)
            break

    env_railway = os.getenv("RAILWAY_TOKEN")
    if env_railway:
        config.credentials.railway_token = env_railway

    env_github = os.getenv("GITHUB_TOKEN")
    if env_github:
        config.credentials.github_token = env_github

    for item in fields(ProvisioningConfig):
        raw = os.getenv(f"{ENV_PREFIX}{item.name.upper()}")
        if raw is None or raw == "":
            continue
        current = getattr(config.provisioning, item.name)
        try:
            setattr(config.provisioning, item.name, _coerce(raw, current))
        except ValueError as exc:
            raise ValueError(f"Invalid value for {ENV_PREFIX}{item.name.upper()}: {raw!r}") from exc

    return config


# ----------------------------------------------------------------------
# Project answers
# ----------------------------------------------------------------------


def slugify(name: str) -> str:
    """'My Site!' -> 'my-site'"""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower())
    return slug.strip("-")


def extract_path_from_url(url: str) -> str:
    """Path portion of a URL without trailing slash: https://a.be/blog/ -> /blog"""
    try:
        path = urlparse(url).path
    except ValueError:
        return ""
    if path in ("", "/"):
        return ""
    return path.rstrip("/")


def normalize_ftp_path(path: str) -> str:
    value = path.strip() or "./"
    if not value.endswith("/"):
        value += "/"
    return value


@dataclass
class ProjectConfig:
    """User input describing the CMS project to create."""

    project_name: str
    admin_email: str
    admin_password: str
    ftp_host: str
    ftp_username: str
    ftp_password: str
    website_url: str
    ftp_path: str = "./"
    project_slug: str = ""
    collections: List[Dict[str, Any]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.project_name = self.project_name.strip()
        if not self.project_slug:
            self.project_slug = slugify(self.project_name)
        self.ftp_path = normalize_ftp_path(self.ftp_path)

    @property
    def website_path(self) -> str:
        return extract_path_from_url(self.website_url)

    def validate(self) -> None:
        """Raise ValueError describing the first invalid answer."""
        if not self.project_name:
            raise ValueError("Project name is required")
        if not self.project_slug:
            raise ValueError(f"Project name '{self.project_name}' does not produce a usable slug")
        if "@" not in self.admin_email:
            raise ValueError(f"Invalid admin email: {self.admin_email!r}")
        if len(self.admin_password) < 8:
            raise ValueError("Admin password must be at least 8 characters")
        for name in ("ftp_host", "ftp_username", "ftp_password"):
            if not getattr(self, name).strip():
                raise ValueError(f"{name.replace('_', ' ').capitalize()} is required")
        if not self.website_url.startswith(("http://", "https://")):
            raise ValueError("Website URL must start with http:// or https://")
        for collection in self.collections:
            validate_collection(collection)

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        data = {
            "project_name": self.project_name,
            "project_slug": self.project_slug,
            "admin_email": self.admin_email,
            "admin_password": "***" if redact else self.admin_password,
            "ftp_host": self.ftp_host,
            "ftp_username": self.ftp_username,
            "ftp_password": "***" if redact else self.ftp_password,
            "ftp_path": self.ftp_path,
            "website_url": self.website_url,
            "website_path": self.website_path,
            "collections": [c.get("slug") for c in self.collections],
        }
        return data


def validate_collection(collection: Dict[str, Any]) -> None:
    """Check one collection definition (name, slug, fields)."""
    for key in ("name", "slug", "fields"):
        if key not in collection:
            raise ValueError(f"Collection definition is missing '{key}': {collection}")
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", str(collection["name"])):
        raise ValueError(f"Collection name must be a valid identifier: {collection['name']!r}")
    slug = collection["slug"]
    if not re.fullmatch(r"[a-z0-9][a-z0-9-]*", str(slug)):
        raise ValueError(f"Invalid collection slug: {slug!r}")
    if slug in ("pages", "media", "users"):
        raise ValueError(f"Collection slug '{slug}' is reserved")
    if not isinstance(collection["fields"], list):
        raise ValueError(f"Collection '{slug}': 'fields' must be a list")
    for item in collection["fields"]:
        if "name" not in item or "type" not in item:
            raise ValueError(f"Collection '{slug}': every field needs a name and a type")
        if item["type"] not in FIELD_TYPES:
            raise ValueError(f"Collection '{slug}': unsupported field type {item['type']!r}")
        if item["type"] == "relationship" and not item.get("relationTo"):
            raise ValueError(f"Collection '{slug}': relationship field '{item['name']}' needs relationTo")


def load_collections(path: str) -> List[Dict[str, Any]]:
    """Load a JSON list of collection definitions (or {"collections": [...]})."""
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if isinstance(data, dict):
        data = data.get("collections", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of collections")
    for collection in data:
        validate_collection(collection)
    return data
