"""The CMS provisioning pipeline: thirteen fixed steps wired to their collaborators."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .cms import PayloadClient, lexical_paragraph
from .config import AppConfig, ProjectConfig
from .errors import PreflightError, ProvisioningError
from .github import GitHubClient, WorkflowRun
from .gitops import GitRepositoryManager
from .orchestrator import (
    OrchestrationOutcome,
    Orchestrator,
    PipelineStep,
    ProgressReporter,
    ProgressTimeline,
    ResourceHandle,
    ResourceKind,
    RollbackCoordinator,
    StepRuntime,
    run_subprocess,
)
from .railway import RailwayClient, generate_secret
from .scaffold import WORKFLOW_PATH, Scaffolder, TemplateContext

logger = logging.getLogger(__name__)

DISPATCH_EVENT = "content_update"
PAYLOAD_ROOT = "payload"


@dataclass
class Collaborators:
    """External systems the pipeline talks to."""
    scaffolder: Scaffolder
    railway: RailwayClient
    github: GitHubClient
    git: GitRepositoryManager
    cms_factory: Callable[[str], PayloadClient]
    run_command: Callable[..., None] = run_subprocess
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic
    now: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, config: AppConfig) -> "Collaborators":
        readiness_path = config.provisioning.readiness_path
        return cls(
            scaffolder=Scaffolder(),
            railway=RailwayClient(config.credentials.railway_token or ""),
            github=GitHubClient(config.credentials.github_token or ""),
            git=GitRepositoryManager(),
            cms_factory=lambda url: PayloadClient(url, readiness_path=readiness_path),
        )


class ProvisioningWorkflow:
    """
    项目创建流程

    Builds the fixed step list for one project and runs it through the
    orchestrator. Generated files live in `<base_dir>/<project slug>` and are
    kept on failure.
    """

    STEP_LABELS = [
        "Scaffolding project files",
        "Installing dependencies",
        "Creating Railway project",
        "Provisioning PostgreSQL database",
        "Generating database migrations",
        "Creating GitHub repository",
        "Pushing code to GitHub",
        "Deploying Payload CMS",
        "Configuring GitHub Secrets",
        "Waiting for Payload CMS to be ready (3-5 min)",
        "Creating initial Home page",
        "Enabling webhook and triggering deploy",
        "Waiting for GitHub Actions workflow to complete",
    ]

    def __init__(
        self,
        config: AppConfig,
        collaborators: Collaborators,
        base_dir: Optional[Path] = None,
    ):
        self.config = config
        self.settings = config.provisioning
        self.collab = collaborators
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()

    def target_dir(self, project: ProjectConfig) -> Path:
        return self.base_dir / project.project_slug

    def build_orchestrator(self, project: ProjectConfig) -> Orchestrator:
        runners = [
            self._scaffold,
            self._install_dependencies,
            self._create_railway_project,
            self._provision_database,
            self._generate_migrations,
            self._create_github_repo,
            self._push_code,
            self._deploy_cms,
            self._configure_secrets,
            self._wait_for_cms,
            self._create_home_page,
            self._trigger_deploy,
            self._wait_for_workflow,
        ]
        steps = [PipelineStep(label, run) for label, run in zip(self.STEP_LABELS, runners)]
        rollback = RollbackCoordinator({
            ResourceKind.REMOTE_REPO: self._delete_repo,
            ResourceKind.CLOUD_PROJECT: self._delete_project,
        })
        return Orchestrator(
            steps,
            rollback,
            preflight=self._preflight,
            reporter=ProgressReporter(list(self.STEP_LABELS), max_lines=self.settings.live_output_lines),
            log_dir=self.settings.log_dir,
            run_name=project.project_slug,
        )

    def run(
        self,
        project: ProjectConfig,
        on_progress: Optional[Callable[[ProgressTimeline], None]] = None,
    ) -> OrchestrationOutcome:
        orchestrator = self.build_orchestrator(project)
        if on_progress is not None:
            orchestrator.reporter.subscribe(on_progress)
        return orchestrator.run({"project": project, "target_dir": self.target_dir(project)})

    # ------------------------------------------------------------------
    # Pre-flight and rollback
    # ------------------------------------------------------------------

    def _preflight(self, context: Dict[str, Any]) -> None:
        project: ProjectConfig = context["project"]
        project.validate()
        target: Path = context["target_dir"]
        if target.exists():
            raise PreflightError(
                f'Directory "{target.name}" already exists in {target.parent}.\n'
                "Please remove it first or choose a different project name."
            )

    def _delete_repo(self, handle: ResourceHandle) -> None:
        self.collab.github.delete_repo(handle.metadata["owner"], handle.metadata["name"])

    def _delete_project(self, handle: ResourceHandle) -> None:
        self.collab.railway.delete_project(handle.identifier)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _scaffold(self, rt: StepRuntime) -> Dict[str, Any]:
        project: ProjectConfig = rt.require("project")
        context = TemplateContext(
            project_name=project.project_name,
            project_slug=project.project_slug,
            admin_email=project.admin_email,
            website_url=project.website_url,
            website_path=project.website_path,
            collections=project.collections,
        )
        written = self.collab.scaffolder.generate(rt.require("target_dir"), context)
        return {"files_written": len(written)}

    def _run(self, rt: StepRuntime, command: List[str], cwd: Path, label: str,
             env: Optional[Dict[str, str]] = None) -> None:
        self.collab.run_command(
            command,
            cwd=str(cwd),
            env=env,
            on_output=rt.emit_output,
            label=label,
            live_lines=self.settings.live_output_lines,
            error_lines=self.settings.error_output_lines,
        )

    def _install_dependencies(self, rt: StepRuntime) -> Dict[str, Any]:
        if not self.settings.install_dependencies:
            logger.info("Skipping npm install (install_dependencies = false)")
            return {"dependencies_installed": False}
        target: Path = rt.require("target_dir")
        for part in ("payload", "web"):
            self._run(rt, ["npm", "install"], target / part, f"npm install in {part}")
        return {"dependencies_installed": True}

    def _create_railway_project(self, rt: StepRuntime) -> Dict[str, Any]:
        project: ProjectConfig = rt.require("project")
        # 服务端一返回 id 就登记，后续解析失败也能回滚
        created = self.collab.railway.create_project(
            project.project_slug,
            on_created=lambda project_id: rt.record(
                ResourceKind.CLOUD_PROJECT, project_id, name=project.project_slug
            ),
        )
        return {"project_id": created.project_id, "environment_id": created.environment_id}

    def _provision_database(self, rt: StepRuntime) -> Dict[str, Any]:
        url = self.collab.railway.provision_database(
            rt.require("project_id"), rt.require("environment_id")
        )
        return {"database_url": url}

    def _generate_migrations(self, rt: StepRuntime) -> None:
        target: Path = rt.require("target_dir")
        self._run(
            rt,
            ["npx", "payload", "migrate:create", "--name", "initial"],
            target / PAYLOAD_ROOT,
            "Migration generation",
            env={"DATABASE_URL": rt.require("database_url")},
        )

    def _create_github_repo(self, rt: StepRuntime) -> Dict[str, Any]:
        project: ProjectConfig = rt.require("project")
        repo = self.collab.github.create_repo(
            project.project_slug,
            private=self.settings.repo_private,
            on_created=lambda owner, name: rt.record(
                ResourceKind.REMOTE_REPO, f"{owner}/{name}", owner=owner, name=name
            ),
        )
        return {
            "repo_owner": repo.owner,
            "repo_name": repo.name,
            "repo_full_name": repo.full_name,
            "repo_url": repo.html_url,
            "clone_url": repo.clone_url,
        }

    def _push_code(self, rt: StepRuntime) -> Dict[str, Any]:
        # 工作流文件稍后单独推送，避免首次提交就触发构建
        sha = self.collab.git.init_and_push(
            rt.require("target_dir"),
            rt.require("clone_url"),
            self.collab.github.token,
            exclude=[WORKFLOW_PATH],
        )
        return {"commit_sha": sha}

    def _deploy_cms(self, rt: StepRuntime) -> Dict[str, Any]:
        railway = self.collab.railway
        project: ProjectConfig = rt.require("project")
        project_id = rt.require("project_id")
        environment_id = rt.require("environment_id")
        repo_full_name = rt.require("repo_full_name")

        service_id = railway.create_service(project_id, project.project_slug)
        # root directory and variables must exist before the repo connection triggers the first build
        railway.set_root_directory(environment_id, service_id, PAYLOAD_ROOT)
        service_url = railway.get_public_domain(environment_id, service_id)
        railway.set_variables(project_id, environment_id, service_id, {
            "DATABASE_URL": rt.require("database_url"),
            "PAYLOAD_SECRET": generate_secret(),
            "PAYLOAD_PUBLIC_SERVER_URL": service_url,
            "PAYLOAD_ADMIN_EMAIL": project.admin_email,
            "PAYLOAD_ADMIN_PASSWORD": project.admin_password,
            "GITHUB_REPO": repo_full_name,
            "RAILWAY_DOCKERFILE_PATH": f"{PAYLOAD_ROOT}/Dockerfile",
            "NIXPACKS_CONFIG_FILE": f"{PAYLOAD_ROOT}/nixpacks.toml",
        })
        railway.connect_repo(service_id, repo_full_name)
        return {
            "service_id": service_id,
            "service_url": service_url,
            "cms_url": f"{service_url}/admin",
        }

    def _configure_secrets(self, rt: StepRuntime) -> None:
        project: ProjectConfig = rt.require("project")
        self.collab.github.set_secrets(rt.require("repo_owner"), rt.require("repo_name"), {
            "FTP_HOST": project.ftp_host,
            "FTP_USERNAME": project.ftp_username,
            "FTP_PASSWORD": project.ftp_password,
            "FTP_SERVER_DIR": project.ftp_path,
            "PAYLOAD_API_URL": f"{rt.require('service_url')}/api",
        })

    def _wait_for_cms(self, rt: StepRuntime) -> Dict[str, Any]:
        cms = self.collab.cms_factory(rt.require("service_url"))
        rt.emit_output([f"Polling {rt.require('service_url')}{self.settings.readiness_path}"])
        try:
            attempts = cms.wait_ready(
                max_attempts=self.settings.readiness_max_attempts,
                interval=self.settings.readiness_interval,
                initial_delay=self.settings.readiness_initial_delay,
                sleep=self.collab.sleep,
                clock=self.collab.clock,
            )
        except ProvisioningError as exc:
            raise ProvisioningError(f"Payload CMS did not become ready: {exc}") from exc
        return {"readiness_attempts": attempts}

    def _create_home_page(self, rt: StepRuntime) -> Dict[str, Any]:
        project: ProjectConfig = rt.require("project")
        cms = self.collab.cms_factory(rt.require("service_url"))
        try:
            cms.authenticate(project.admin_email, project.admin_password)
            page_id = cms.create_page(
                title="Home",
                slug="home",
                body=lexical_paragraph(
                    f"Welcome to {project.project_name}! This is your brand new "
                    "CMS-powered website. Start creating amazing content!"
                ),
                show_in_menu=True,
                menu_order=1,
            )
        except ProvisioningError as exc:
            raise ProvisioningError(f"Failed to create Home page: {exc}") from exc
        return {"home_page_id": page_id}

    def _trigger_deploy(self, rt: StepRuntime) -> Dict[str, Any]:
        owner, name = rt.require("repo_owner"), rt.require("repo_name")
        # GITHUB_TOKEN 最后才设置，Home 页面创建时不会触发 webhook
        self.collab.railway.set_variables(
            rt.require("project_id"),
            rt.require("environment_id"),
            rt.require("service_id"),
            {"GITHUB_TOKEN": self.collab.github.token},
        )
        self.collab.git.commit_and_push_paths(
            rt.require("target_dir"),
            [WORKFLOW_PATH],
            "Add GitHub Actions workflow for auto-deploy",
        )
        triggered_at = self.collab.now()
        self.collab.github.dispatch(owner, name, DISPATCH_EVENT, {
            "collection": "pages",
            "timestamp": triggered_at.isoformat(),
        })
        return {"dispatched_at": triggered_at}

    def _wait_for_workflow(self, rt: StepRuntime) -> Dict[str, Any]:
        project: ProjectConfig = rt.require("project")

        def show(run: WorkflowRun) -> None:
            lines = [f"Status: {run.status}"]
            if run.conclusion:
                lines.append(f"Conclusion: {run.conclusion}")
            rt.emit_output(lines)

        try:
            run = self.collab.github.await_pipeline_run(
                rt.require("repo_owner"),
                rt.require("repo_name"),
                rt.require("dispatched_at"),
                on_progress=show,
                initial_delay=self.settings.workflow_initial_delay,
                interval=self.settings.workflow_poll_interval,
                timeout=self.settings.workflow_timeout,
                sleep=self.collab.sleep,
                clock=self.collab.clock,
            )
        except ProvisioningError as exc:
            raise ProvisioningError(f"Failed to complete GitHub Actions workflow: {exc}") from exc

        if not run.success:
            raise ProvisioningError(
                f"GitHub Actions workflow failed with conclusion: {run.conclusion}. "
                f"View details at: {run.html_url}"
            )
        return {"workflow_url": run.html_url, "website_url": project.website_url}
