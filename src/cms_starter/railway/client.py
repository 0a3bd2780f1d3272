"""Railway GraphQL client: projects, the Postgres database and the CMS service."""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

from ..errors import ProvisioningError
from ..orchestrator.polling import ReadinessTimeoutError, await_ready

logger = logging.getLogger(__name__)

RAILWAY_API_URL = "https://backboard.railway.app/graphql/v2"

POSTGRES_IMAGE = "postgres:16-alpine"
POSTGRES_SERVICE_NAME = "Postgres"
POSTGRES_VOLUME_PATH = "/var/lib/postgresql/data"
POSTGRES_USER = "payload"
POSTGRES_DB = "payload"


class RailwayAPIError(ProvisioningError):
    """Raised for HTTP, GraphQL or payload-shape failures of the Railway API."""

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        self.operation = operation
        context = f" ({operation})" if operation else ""
        super().__init__(f"Railway API error{context}: {message}")


def generate_secret(num_bytes: int = 32) -> str:
    """Random hex secret (PAYLOAD_SECRET uses 32 bytes)."""
    return secrets.token_hex(num_bytes)


@dataclass
class RailwayProject:
    project_id: str
    environment_id: str


_PROJECT_FIELDS = """
        id
        environments {
          edges {
            node {
              id
              name
            }
          }
        }
"""


class RailwayClient:
    """Thin wrapper over the Railway public GraphQL API."""

    def __init__(
        self,
        token: str,
        session: Optional[requests.Session] = None,
        api_url: str = RAILWAY_API_URL,
        timeout: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not token:
            raise ValueError("Railway token is required")
        self.token = token
        self.api_url = api_url
        self.timeout = timeout
        self.sleep = sleep
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        })

    def request(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        operation: Optional[str] = None,
    ) -> Dict[str, Any]:
        """POST one GraphQL document and return its `data` object."""
        try:
            response = self.session.post(
                self.api_url,
                json={"query": query, "variables": variables or {}},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise RailwayAPIError(str(exc), operation) from exc

        if not response.ok:
            raise RailwayAPIError(f"{response.status_code} - {response.text[:500]}", operation)

        payload = response.json()
        errors = payload.get("errors") or []
        if errors:
            raise RailwayAPIError(errors[0].get("message", "unknown GraphQL error"), operation)
        data = payload.get("data")
        if data is None:
            raise RailwayAPIError("no data in response", operation)
        return data

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(
        self, name: str, on_created: Optional[Callable[[str], None]] = None
    ) -> RailwayProject:
        """Create a project and return its id plus the production environment id.

        Accounts that belong to a team require a workspace id; the first
        workspace of the token is used in that case. `on_created` receives the
        project id as soon as the server reports it, before the rest of the
        response is read.
        """
        query = f"""
    mutation CreateProject($name: String!) {{
      projectCreate(input: {{ name: $name }}) {{{_PROJECT_FIELDS}      }}
    }}
"""
        try:
            data = self.request(query, {"name": name}, "create project")
        except RailwayAPIError as exc:
            if "must specify a workspaceId" not in str(exc):
                raise
            workspace_id = self.default_workspace_id()
            logger.info("Retrying project creation in workspace %s", workspace_id)
            query = f"""
    mutation CreateProject($name: String!, $workspaceId: String!) {{
      projectCreate(input: {{ name: $name, workspaceId: $workspaceId }}) {{{_PROJECT_FIELDS}      }}
    }}
"""
            data = self.request(
                query, {"name": name, "workspaceId": workspace_id}, "create project (with workspace)"
            )

        project = data.get("projectCreate") or {}
        project_id = project.get("id")
        if not project_id:
            raise RailwayAPIError("response did not include a project id", "create project")
        logger.info("🚂 Created Railway project %s", project_id)
        if on_created is not None:
            on_created(project_id)

        edges = (project.get("environments") or {}).get("edges") or []
        if not edges:
            raise RailwayAPIError(f"project {project_id} has no environments", "create project")
        environment = next(
            (e["node"] for e in edges if e["node"].get("name") == "production"),
            edges[0]["node"],
        )
        return RailwayProject(project_id=project_id, environment_id=environment["id"])

    def default_workspace_id(self) -> str:
        query = """
    query {
      apiToken {
        workspaces {
          id
          name
        }
      }
    }
"""
        try:
            data = self.request(query, operation="get workspace ID")
        except RailwayAPIError as exc:
            if "Not Authorized" in str(exc):
                raise RailwayAPIError(
                    "this account requires a workspace ID, but the token is a user session "
                    "token. Create an API token at https://railway.app/account/tokens and "
                    "set it as RAILWAY_TOKEN",
                    "get workspace ID",
                ) from exc
            raise
        workspaces = (data.get("apiToken") or {}).get("workspaces") or []
        if not workspaces:
            raise RailwayAPIError(
                "no Railway workspace found; create one at railway.app first", "get workspace ID"
            )
        return workspaces[0]["id"]

    def find_project_by_name(self, name: str) -> Optional[str]:
        query = """
    query {
      projects {
        edges {
          node {
            id
            name
          }
        }
      }
    }
"""
        data = self.request(query, operation="list projects")
        for edge in (data.get("projects") or {}).get("edges", []):
            if edge["node"].get("name") == name:
                return edge["node"]["id"]
        return None

    def delete_project(self, project_id: str) -> None:
        query = """
    mutation DeleteProject($projectId: String!) {
      projectDelete(id: $projectId)
    }
"""
        self.request(query, {"projectId": project_id}, "delete project")
        logger.info("🗑️  Deleted Railway project %s", project_id)

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    def create_service(self, project_id: str, name: str, image: Optional[str] = None) -> str:
        if image:
            query = """
    mutation CreateService($projectId: String!, $name: String!, $image: String!) {
      serviceCreate(input: { projectId: $projectId, name: $name, source: { image: $image } }) {
        id
      }
    }
"""
            variables = {"projectId": project_id, "name": name, "image": image}
        else:
            query = """
    mutation CreateService($projectId: String!, $name: String!) {
      serviceCreate(input: { projectId: $projectId, name: $name }) {
        id
      }
    }
"""
            variables = {"projectId": project_id, "name": name}
        data = self.request(query, variables, f"create service {name}")
        return data["serviceCreate"]["id"]

    def create_volume(self, project_id: str, environment_id: str, service_id: str, mount_path: str) -> str:
        query = """
    mutation AddVolume($projectId: String!, $serviceId: String!, $environmentId: String!, $mountPath: String!) {
      volumeCreate(input: {
        projectId: $projectId
        serviceId: $serviceId
        environmentId: $environmentId
        mountPath: $mountPath
      }) {
        id
      }
    }
"""
        data = self.request(query, {
            "projectId": project_id,
            "serviceId": service_id,
            "environmentId": environment_id,
            "mountPath": mount_path,
        }, "add volume")
        return data["volumeCreate"]["id"]

    def set_variables(
        self,
        project_id: str,
        environment_id: str,
        service_id: str,
        variables: Dict[str, str],
    ) -> None:
        query = """
    mutation SetVariables($projectId: String!, $environmentId: String!, $serviceId: String!, $variables: EnvironmentVariables!) {
      variableCollectionUpsert(input: {
        projectId: $projectId
        environmentId: $environmentId
        serviceId: $serviceId
        variables: $variables
      })
    }
"""
        self.request(query, {
            "projectId": project_id,
            "environmentId": environment_id,
            "serviceId": service_id,
            "variables": variables,
        }, "set service variables")
        logger.debug("Set %d variable(s) on service %s", len(variables), service_id)

    def set_root_directory(self, environment_id: str, service_id: str, root_directory: str) -> None:
        query = """
    mutation SetRootDirectory($environmentId: String, $serviceId: String!, $rootDirectory: String!) {
      serviceInstanceUpdate(
        environmentId: $environmentId
        serviceId: $serviceId
        input: { rootDirectory: $rootDirectory }
      )
    }
"""
        self.request(query, {
            "environmentId": environment_id,
            "serviceId": service_id,
            "rootDirectory": root_directory,
        }, "set service root directory")

    def connect_repo(self, service_id: str, repo_full_name: str, branch: str = "main") -> None:
        """Attach a GitHub repo to the service; Railway starts a build right away."""
        query = """
    mutation ConnectRepo($serviceId: String!, $repo: String!, $branch: String!) {
      serviceConnect(id: $serviceId, input: { repo: $repo, branch: $branch }) {
        id
      }
    }
"""
        try:
            self.request(query, {
                "serviceId": service_id,
                "repo": repo_full_name,
                "branch": branch,
            }, "connect GitHub repo")
        except RailwayAPIError as exc:
            raise RailwayAPIError(
                f"failed to connect GitHub repo \"{repo_full_name}\": {exc}", "connect GitHub repo"
            ) from exc

    def get_public_domain(self, environment_id: str, service_id: str) -> str:
        query = """
    mutation CreateDomain($environmentId: String!, $serviceId: String!) {
      serviceDomainCreate(input: { serviceId: $serviceId, environmentId: $environmentId }) {
        domain
      }
    }
"""
        data = self.request(query, {
            "environmentId": environment_id,
            "serviceId": service_id,
        }, "create service domain")
        return f"https://{data['serviceDomainCreate']['domain']}"

    def deploy_service(self, environment_id: str, service_id: str) -> None:
        query = """
    mutation Deploy($environmentId: String!, $serviceId: String!) {
      serviceInstanceDeploy(environmentId: $environmentId, serviceId: $serviceId)
    }
"""
        self.request(query, {"environmentId": environment_id, "serviceId": service_id}, "deploy service")

    def latest_deployment_status(self, service_id: str) -> Optional[str]:
        query = """
    query ServiceStatus($serviceId: String!) {
      service(id: $serviceId) {
        deployments(first: 1) {
          edges {
            node {
              status
            }
          }
        }
      }
    }
"""
        data = self.request(query, {"serviceId": service_id}, "check deployment status")
        edges: List[Dict[str, Any]] = data["service"]["deployments"]["edges"]
        return edges[0]["node"]["status"] if edges else None

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    def provision_database(
        self,
        project_id: str,
        environment_id: str,
        max_attempts: int = 60,
        interval: float = 3.0,
    ) -> str:
        """Create a Postgres service with a volume and return its internal URL.

        The URL is returned even if the deployment was not confirmed within
        the polling budget; the database may still be starting.
        """
        service_id = self.create_service(project_id, POSTGRES_SERVICE_NAME, image=POSTGRES_IMAGE)
        self.create_volume(project_id, environment_id, service_id, POSTGRES_VOLUME_PATH)

        password = generate_secret(16)
        self.set_variables(project_id, environment_id, service_id, {
            "POSTGRES_USER": POSTGRES_USER,
            "POSTGRES_PASSWORD": password,
            "POSTGRES_DB": POSTGRES_DB,
            "PGDATA": f"{POSTGRES_VOLUME_PATH}/pgdata",
        })
        self.deploy_service(environment_id, service_id)

        try:
            await_ready(
                lambda: self.latest_deployment_status(service_id) == "SUCCESS",
                max_attempts=max_attempts,
                interval=interval,
                description="Postgres deployment",
                sleep=self.sleep,
            )
        except ReadinessTimeoutError as exc:
            logger.warning("⚠️  %s; continuing with the internal URL", exc)

        # Railway 内部 DNS: <service>.railway.internal
        return (
            f"postgresql://{POSTGRES_USER}:{password}"
            f"@{POSTGRES_SERVICE_NAME}.railway.internal:5432/{POSTGRES_DB}"
        )
