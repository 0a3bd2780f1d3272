"""Command-line interface for cms-starter."""

from __future__ import annotations

import argparse
import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from rich.console import Console

from .auth import CredentialError, resolve_credentials, verify_github_token, verify_railway_token
from .config import AppConfig, ProjectConfig, load_collections, load_config, slugify
from .display import TimelineDisplay, render_outcome
from .github import GitHubAPIError, GitHubClient
from .interaction import (
    AutoResponseHandler,
    CLIInteractionHandler,
    InputType,
    InteractionRequest,
    QuestionCategory,
    UserInteractionHandler,
)
from .railway import RailwayAPIError, RailwayClient
from .utils.logging import get_logger
from .workflow import Collaborators, ProvisioningWorkflow


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    console: Console
    interactive: bool


def _required(label: str):
    return lambda value: None if value.strip() else f"{label} is required"


def _email(value: str) -> Optional[str]:
    return None if "@" in value else "Enter a valid email address"


def _password(value: str) -> Optional[str]:
    return None if len(value) >= 8 else "Password must be at least 8 characters"


def _url(value: str) -> Optional[str]:
    return None if value.startswith(("http://", "https://")) else "URL must start with http:// or https://"


# (key, question, input type, default, validator)
PROJECT_QUESTIONS = [
    ("project_name", "Project name", InputType.TEXT, None, _required("Project name")),
    ("admin_email", "Admin email", InputType.TEXT, None, _email),
    ("admin_password", "Admin password (min 8 characters)", InputType.SECRET, None, _password),
    ("ftp_host", "FTP host", InputType.TEXT, None, _required("FTP host")),
    ("ftp_username", "FTP username", InputType.TEXT, None, _required("FTP username")),
    ("ftp_password", "FTP password", InputType.SECRET, None, _required("FTP password")),
    ("ftp_path", "FTP path on the server", InputType.TEXT, "./", None),
    ("website_url", "Website URL (where the static site is served)", InputType.TEXT, None, _url),
]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cms-starter",
        description="Scaffold a Payload CMS + Nuxt site and provision it on Railway and GitHub.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show collaborator log messages while provisioning.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # create 子命令 - 创建并部署项目
    create_parser = subparsers.add_parser(
        "create", help="Create a new CMS project and provision its infrastructure"
    )
    create_parser.add_argument("--name", dest="project_name", help="Project name")
    create_parser.add_argument("--admin-email", help="Payload admin email")
    create_parser.add_argument("--admin-password", help="Payload admin password")
    create_parser.add_argument("--ftp-host", help="FTP host for the static site")
    create_parser.add_argument("--ftp-user", dest="ftp_username", help="FTP username")
    create_parser.add_argument("--ftp-password", help="FTP password")
    create_parser.add_argument("--ftp-path", help="FTP target directory (default: ./)")
    create_parser.add_argument("--website-url", help="Public URL of the static site")
    create_parser.add_argument(
        "--collections", type=str, default=None,
        help="JSON file with extra Payload collection definitions"
    )
    create_parser.add_argument(
        "--skip-install", action="store_true",
        help="Do not run npm install after scaffolding"
    )
    create_parser.add_argument(
        "--non-interactive", action="store_true",
        help="Never prompt; every answer must come from flags"
    )
    create_parser.add_argument(
        "--yes", "-y", action="store_true",
        help="Skip the confirmation before creating resources"
    )

    # delete 子命令 - 删除项目的远程资源
    delete_parser = subparsers.add_parser(
        "delete", help="Delete the Railway project and GitHub repository of a project"
    )
    delete_parser.add_argument("name", help="Project name or slug")
    delete_parser.add_argument(
        "--local", action="store_true",
        help="Also remove the local project directory"
    )
    delete_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    # auth 子命令 - 管理 API token
    auth_parser = subparsers.add_parser("auth", help="Set up and verify Railway and GitHub tokens")
    auth_parser.add_argument(
        "--status", action="store_true",
        help="Only report where tokens come from; never prompt"
    )

    # logs 子命令 - 查看运行日志
    logs_parser = subparsers.add_parser("logs", help="View provisioning run logs")
    logs_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_logs",
        help="List all available logs"
    )
    logs_parser.add_argument(
        "--latest", action="store_true",
        help="Show the latest run log"
    )
    logs_parser.add_argument(
        "--file", "-f", type=str,
        help="Show a specific log file"
    )

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    return CLIContext(
        config=config,
        console=Console(),
        interactive=not getattr(args, "non_interactive", False),
    )


def _handler(context: CLIContext, presets: Optional[Dict[str, str]] = None) -> UserInteractionHandler:
    if context.interactive:
        return CLIInteractionHandler(context.console)
    return AutoResponseHandler(presets or {}, always_confirm=True)


# ----------------------------------------------------------------------
# create
# ----------------------------------------------------------------------


def collect_project_answers(
    handler: UserInteractionHandler,
    presets: Dict[str, Optional[str]],
) -> Optional[Dict[str, str]]:
    """Ask every project question that has no preset answer. None when cancelled."""
    answers: Dict[str, str] = {}
    for key, question, input_type, default, validator in PROJECT_QUESTIONS:
        preset = presets.get(key)
        if preset is not None:
            answers[key] = preset
            continue
        response = handler.ask(InteractionRequest(
            question=question,
            input_type=input_type,
            key=key,
            category=QuestionCategory.PROJECT,
            default=default,
            validator=validator,
        ))
        if response.cancelled:
            return None
        answers[key] = response.value
    return answers


def handle_create_command(args: argparse.Namespace, context: CLIContext) -> int:
    """Handle the create subcommand."""
    console = context.console
    if args.skip_install:
        context.config.provisioning.install_dependencies = False

    collections: List[Dict] = []
    if args.collections:
        try:
            collections = load_collections(args.collections)
        except (OSError, ValueError) as exc:
            console.print(f"[red]❌ Invalid collections file: {exc}[/red]")
            return 1

    presets = {
        "project_name": args.project_name,
        "admin_email": args.admin_email,
        "admin_password": args.admin_password,
        "ftp_host": args.ftp_host,
        "ftp_username": args.ftp_username,
        "ftp_password": args.ftp_password,
        "ftp_path": args.ftp_path,
        "website_url": args.website_url,
    }
    handler = _handler(context)
    answers = collect_project_answers(handler, presets)
    if answers is None:
        missing = [
            key for key, _, _, default, _ in PROJECT_QUESTIONS
            if presets.get(key) is None and default is None
        ]
        if context.interactive:
            console.print("❌ Cancelled")
        else:
            console.print(f"[red]❌ Missing answers in non-interactive mode: {', '.join(missing)}[/red]")
        return 1

    project = ProjectConfig(collections=collections, **answers)
    try:
        project.validate()
    except ValueError as exc:
        console.print(f"[red]❌ {exc}[/red]")
        return 1

    try:
        resolve_credentials(context.config, interaction=handler if context.interactive else None)
        railway_email = verify_railway_token(context.config.credentials.railway_token)
        github_login = verify_github_token(context.config.credentials.github_token)
    except CredentialError as exc:
        console.print(f"[red]❌ {exc}[/red]")
        return 1

    console.print(f"\n🚂 Railway: [bold]{railway_email}[/bold]   🐙 GitHub: [bold]{github_login}[/bold]")
    console.print(f"📁 Project directory: ./{project.project_slug}")
    if collections:
        console.print(f"📚 Extra collections: {', '.join(c['slug'] for c in collections)}")

    if not args.yes:
        response = handler.ask(InteractionRequest(
            question=f"Create '{project.project_name}' on Railway and GitHub?",
            input_type=InputType.CONFIRM,
            key="confirm_create",
            category=QuestionCategory.CONFIRMATION,
            default="y",
        ))
        if not response.confirmed:
            console.print("❌ Cancelled")
            return 1

    workflow = ProvisioningWorkflow(context.config, Collaborators.from_config(context.config))
    with TimelineDisplay(console) as display:
        outcome = workflow.run(project, on_progress=display.update)

    console.print(render_outcome(outcome))
    return 0 if outcome.success else 1


# ----------------------------------------------------------------------
# delete
# ----------------------------------------------------------------------


def handle_delete_command(args: argparse.Namespace, context: CLIContext) -> int:
    """Handle the delete subcommand."""
    console = context.console
    slug = slugify(args.name)
    if not slug:
        console.print(f"[red]❌ '{args.name}' is not a usable project name[/red]")
        return 1

    handler = _handler(context)
    try:
        resolve_credentials(context.config, interaction=handler)
    except CredentialError as exc:
        console.print(f"[red]❌ {exc}[/red]")
        return 1

    if not args.yes:
        targets = f"Railway project and GitHub repository '{slug}'"
        if args.local:
            targets += f" and ./{slug}"
        response = handler.ask(InteractionRequest(
            question=f"⚠️  Permanently delete the {targets}?",
            input_type=InputType.CONFIRM,
            key="confirm_delete",
            category=QuestionCategory.CONFIRMATION,
            default="n",
        ))
        if not response.confirmed:
            console.print("❌ Cancelled")
            return 1

    summary: List[str] = []
    failed = False

    railway = RailwayClient(context.config.credentials.railway_token)
    try:
        project_id = railway.find_project_by_name(slug)
        if project_id is None:
            summary.append(f"ℹ️  Railway project '{slug}' not found")
        else:
            railway.delete_project(project_id)
            summary.append(f"✅ Deleted Railway project '{slug}' ({project_id})")
    except RailwayAPIError as exc:
        failed = True
        summary.append(f"❌ Railway: {exc}")

    github = GitHubClient(context.config.credentials.github_token)
    try:
        owner = github.get_login()
        github.delete_repo(owner, slug)
        summary.append(f"✅ Deleted GitHub repository {owner}/{slug}")
    except GitHubAPIError as exc:
        if exc.not_found:
            summary.append(f"ℹ️  GitHub repository '{slug}' not found")
        else:
            failed = True
            summary.append(f"❌ GitHub: {exc}")

    if args.local:
        local_dir = Path.cwd() / slug
        if local_dir.is_dir():
            try:
                shutil.rmtree(local_dir)
                summary.append(f"✅ Removed {local_dir}")
            except OSError as exc:
                failed = True
                summary.append(f"❌ Could not remove {local_dir}: {exc}")
        else:
            summary.append(f"ℹ️  {local_dir} does not exist")

    console.print()
    for line in summary:
        console.print(line)
    return 1 if failed else 0


# ----------------------------------------------------------------------
# auth
# ----------------------------------------------------------------------


def handle_auth_command(args: argparse.Namespace, context: CLIContext) -> int:
    """Handle the auth subcommand."""
    console = context.console
    interaction = None if args.status else _handler(context)
    try:
        sources = resolve_credentials(context.config, interaction=interaction)
    except CredentialError as exc:
        console.print(f"[red]❌ {exc}[/red]")
        return 1

    checks = (
        ("railway", "🚂 Railway", verify_railway_token, context.config.credentials.railway_token),
        ("github", "🐙 GitHub", verify_github_token, context.config.credentials.github_token),
    )
    exit_code = 0
    for provider, title, verify, token in checks:
        try:
            account = verify(token)
            console.print(f"{title}: ✅ {account} (from {sources[provider]})")
        except CredentialError as exc:
            exit_code = 1
            console.print(f"{title}: [red]❌ {exc}[/red] (from {sources[provider]})")
    return exit_code


# ----------------------------------------------------------------------
# logs
# ----------------------------------------------------------------------


def handle_logs_command(args: argparse.Namespace, context: CLIContext) -> int:
    """Handle the logs subcommand."""
    log_dir = Path(context.config.provisioning.log_dir)

    if not log_dir.exists():
        print("📁 No run logs found. Run `cms-starter create` first.")
        return 0

    log_files = sorted(log_dir.glob("provision_*.json"), key=lambda p: p.stat().st_mtime, reverse=True)

    if not log_files:
        print("📁 No provisioning logs found.")
        return 0

    # 列出所有日志
    if args.list_logs:
        print(f"📁 Run logs in: {log_dir}\n")
        print(f"{'#':<4} {'Status':<14} {'Project':<30} {'Time':<20} {'File'}")
        print("-" * 100)
        for i, log_file in enumerate(log_files, 1):
            try:
                with open(log_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                status = data.get("status", "unknown")
                project = data.get("run_name", "?")
                start_time = (data.get("start_time") or "")[:19].replace("T", " ")
                print(f"{i:<4} {_status_emoji(status)} {status:<12} {project:<30} {start_time:<20} {log_file.name}")
            except (OSError, ValueError):
                print(f"{i:<4} ❓ {'error':<12} {'?':<30} {'?':<20} {log_file.name}")
        return 0

    # 选择要显示的日志文件
    if args.file:
        target_file = Path(args.file)
        if not target_file.exists():
            # 尝试在 log_dir 中查找
            target_file = log_dir / args.file
        if not target_file.exists():
            print(f"❌ Log file not found: {args.file}")
            return 1
    else:
        target_file = log_files[0]

    show_log_file(target_file)
    return 0


def _status_emoji(status: str) -> str:
    return {"success": "✅", "step": "❌", "preflight": "⛔", "running": "🔄"}.get(status, "❓")


def show_log_file(log_file: Path) -> None:
    """Display a provisioning run log."""
    with open(log_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    status = data.get("status", "unknown")

    print(f"\n{'='*60}")
    print(f"📄 Provisioning Log: {log_file.name}")
    print(f"{'='*60}")
    print(f"📦 Project:    {data.get('run_name', 'N/A')}")
    print(f"⏰ Started:    {data.get('start_time', 'N/A')}")
    print(f"⏱️  Ended:      {data.get('end_time', 'N/A')}")
    print(f"{_status_emoji(status)} Status:     {status}")
    print(f"📊 Steps:      {len(data.get('steps', []))}")
    print(f"{'='*60}\n")

    for step in data.get("steps", []):
        icon = "✓" if step.get("status") == "complete" else "✗"
        print(f"[{step.get('index', '?')}] {icon} {step.get('label', '?')}")
        for key, value in (step.get("outputs") or {}).items():
            print(f"    {key}: {value}")
        if step.get("error"):
            for line in str(step["error"]).splitlines()[:10]:
                print(f"    │ {line[:100]}")
        print()

    if data.get("error") and not data.get("steps"):
        print(f"⛔ {data['error']}\n")

    rollback = data.get("rollback")
    if rollback:
        print("↩️  Rollback")
        for name in rollback.get("deleted", []):
            print(f"    ✓ {name}")
        for name, reason in (rollback.get("failures") or {}).items():
            print(f"    ✗ {name}: {reason}")
        print()

    print(f"{'='*60}")
    print(f"📄 Full log: {log_file}")
    print(f"{'='*60}\n")


def dispatch_command(args: argparse.Namespace) -> int:
    context = _build_context(args)

    if args.command == "logs":
        return handle_logs_command(args, context)
    if args.command == "auth":
        return handle_auth_command(args, context)
    if args.command == "delete":
        return handle_delete_command(args, context)
    if args.command == "create":
        return handle_create_command(args, context)

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    # 进度由时间线展示，默认只输出警告
    get_logger(level=logging.DEBUG if args.verbose else logging.WARNING)
    return dispatch_command(args)
