#!/usr/bin/env python3
"""
GitLab to GitLab Project Migration Tool

This tool migrates every project of one GitLab instance (A) to another (B),
replicating the source group/subgroup structure below a target root group:
- Mirror clone of all branches and tags
- Git LFS objects where the project uses them
- Missing groups and projects are created on the fly
- Already migrated projects are skipped on re-runs
"""

import os
import shutil
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Iterator, Any
from urllib.parse import urlparse, urlunparse

import click
import git
import gitlab
import requests
from requests.adapters import HTTPAdapter
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt, IntPrompt
from rich.table import Table

from glnamespaces import (
    ROOT_NAMESPACE,
    CreationError,
    GitLabGroupDirectory,
    NamespaceResolver,
)

console = Console()

# Configuration constants
PROJECTS_PER_PAGE = 100
DEFAULT_WORKSPACE = "workspace"
SUCCESS_LOG_NAME = "migration_success.log"
ERROR_LOG_NAME = "migration_error.log"
DEBUG_LOG_NAME = ".migration_debug.log"

# GitLab keeps these refs read-only, pushing them to B fails
INTERNAL_REF_PREFIXES = (
    "refs/merge-requests",
    "refs/environments",
    "refs/pipelines",
)


@dataclass
class MigrationConfig:
    """Settings for one migration run"""
    source_url: Optional[str] = None
    source_token: Optional[str] = None
    destination_url: Optional[str] = None
    destination_token: Optional[str] = None
    root_group_id: Optional[int] = None
    resolve_ip: Optional[str] = None
    resolve_domain: Optional[str] = None
    dry_run: bool = False
    use_ssh_push: bool = True
    ignore_cert: bool = False
    workspace: Path = Path(DEFAULT_WORKSPACE)
    log_dir: Path = Path(".")

    REQUIRED = (
        ("source_url", "GITLAB_A_URL"),
        ("source_token", "GITLAB_A_TOKEN"),
        ("destination_url", "GITLAB_B_URL"),
        ("destination_token", "GITLAB_B_TOKEN"),
        ("root_group_id", "GITLAB_B_TARGET_ROOT_GROUP_ID"),
    )

    def missing(self) -> List[str]:
        """Return the environment variable names of unset required settings."""
        return [env for attr, env in self.REQUIRED if getattr(self, attr) in (None, "")]

    def problems(self) -> List[str]:
        problems = [f"{env} is not set" for env in self.missing()]
        if bool(self.resolve_ip) != bool(self.resolve_domain):
            problems.append("GIT_RESOLVE_IP and GIT_RESOLVE_DOMAIN must be set together")
        return problems

    @property
    def resolves_host(self) -> bool:
        return self.ignore_cert and bool(self.resolve_ip and self.resolve_domain)


@dataclass
class MigrationSummary:
    """Outcome of a migration run"""
    migrated: List[str] = field(default_factory=list)
    planned: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    authenticated: bool = True

    @property
    def ok(self) -> bool:
        return self.authenticated and not self.failed


class MigrationLog:
    """Console output plus the success, error and debug log files."""

    def __init__(self, log_dir: Path):
        self.success_log = log_dir / SUCCESS_LOG_NAME
        self.error_log = log_dir / ERROR_LOG_NAME
        self.debug_log = log_dir / DEBUG_LOG_NAME

    def prepare(self):
        self.success_log.parent.mkdir(parents=True, exist_ok=True)
        self.success_log.touch()
        self.error_log.touch()

    def info(self, message: str, style: Optional[str] = None):
        self._append(self.debug_log, message)
        console.print(escape(message), style=style)

    def warning(self, message: str):
        self.info(message, style="yellow")

    def error(self, project_path: str, message: str):
        stamp = datetime.now().isoformat(sep=" ", timespec="seconds")
        self._append(self.error_log, f"{stamp}: [{project_path}] - {message}")
        console.print(
            f"❌ ERROR: Migration failed for {escape(project_path)}. See {self.error_log} for details.",
            style="red",
        )

    def success(self, project_path: str):
        self._append(self.success_log, project_path)

    def is_migrated(self, project_path: str) -> bool:
        if not self.success_log.exists():
            return False
        with open(self.success_log, "r", encoding="utf-8") as f:
            return any(line.rstrip("\n") == project_path for line in f)

    @staticmethod
    def _append(path: Path, line: str):
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")


class ResolvingAdapter(HTTPAdapter):
    """Sends requests for ``domain`` to ``ip``, keeping the Host header (curl --resolve)."""

    def __init__(self, domain: str, ip: str, **kwargs):
        self.domain = domain
        self.ip = ip
        super().__init__(**kwargs)

    def send(self, request, **kwargs):
        parsed = urlparse(request.url)
        if parsed.hostname == self.domain:
            netloc = self.ip if parsed.port is None else f"{self.ip}:{parsed.port}"
            request.url = urlunparse(parsed._replace(netloc=netloc))
            request.headers['Host'] = parsed.netloc
        return super().send(request, **kwargs)


def build_session(config: MigrationConfig) -> requests.Session:
    """Create the HTTP session shared by both GitLab clients."""
    session = requests.Session()
    if config.resolves_host:
        adapter = ResolvingAdapter(config.resolve_domain, config.resolve_ip)
        session.mount(f"https://{config.resolve_domain}", adapter)
        session.mount(f"http://{config.resolve_domain}", adapter)
    return session


def source_namespace(path_with_namespace: str) -> str:
    """Return the group part of a project path, ``.`` for top-level projects."""
    namespace = os.path.dirname(path_with_namespace)
    return namespace or ROOT_NAMESPACE


def with_credentials(url: str, token: str) -> str:
    """Embed an oauth2 token into an HTTP(S) clone URL."""
    return url.replace('://', f'://oauth2:{token}@', 1)


def strip_internal_refs(repo_path: Path) -> List[str]:
    """Remove GitLab-internal refs from a bare repository and return their names."""
    removed = []
    for prefix in INTERNAL_REF_PREFIXES:
        ref_dir = repo_path / prefix
        if ref_dir.exists():
            removed.extend(
                str(p.relative_to(repo_path).as_posix()) for p in ref_dir.rglob("*") if p.is_file()
            )
            shutil.rmtree(ref_dir)

    packed_refs = repo_path / "packed-refs"
    if packed_refs.exists():
        kept = []
        dropping = False
        for line in packed_refs.read_text(encoding="utf-8").splitlines(keepends=True):
            # Peeled lines ("^<sha>") belong to the ref right above them
            if line.startswith("^"):
                if not dropping:
                    kept.append(line)
                continue
            ref_name = line.split(" ", 1)[1].strip() if " " in line else ""
            dropping = any(ref_name.startswith(f"{prefix}/") for prefix in INTERNAL_REF_PREFIXES)
            if dropping:
                removed.append(ref_name)
            else:
                kept.append(line)
        packed_refs.write_text("".join(kept), encoding="utf-8")
    return removed


class MirrorClone:
    """A bare mirror of a source repository on local disk."""

    def __init__(self, repo: git.Repo, path: Path):
        self.repo = repo
        self.path = path

    @classmethod
    def clone(cls, url: str, path: Path) -> "MirrorClone":
        if path.exists():
            shutil.rmtree(path)
        repo = git.Repo.clone_from(url, str(path), mirror=True, quiet=True)
        return cls(repo, path)

    def branches_and_tags(self) -> List[str]:
        output = self.repo.git.for_each_ref("--format=%(refname:short)", "refs/heads", "refs/tags")
        return [line for line in output.splitlines() if line]

    def all_refs(self) -> List[str]:
        output = self.repo.git.for_each_ref("--format=%(refname)")
        return [line for line in output.splitlines() if line]

    def set_config(self, key: str, value: str):
        self.repo.git.config("--local", key, value)

    def lfs_file_count(self) -> int:
        output = self.repo.git.lfs("ls-files")
        return len([line for line in output.splitlines() if line.strip()])

    def lfs_install(self):
        self.repo.git.lfs("install", "--local")

    def lfs_fetch_all(self):
        self.repo.git.lfs("fetch", "--all")

    def lfs_push_all(self, remote_url: str):
        self.repo.git.lfs("push", "--all", remote_url)

    def push_mirror(self, remote_url: str):
        self.repo.remotes.origin.set_url(remote_url)
        self.repo.git.push("origin", "--mirror")

    def remove(self):
        shutil.rmtree(self.path, ignore_errors=True)


class GitLabMigration:
    def __init__(self, config: MigrationConfig, log: Optional[MigrationLog] = None):
        self.config = config
        self.log = log or MigrationLog(config.log_dir)
        self.source_client = None
        self.destination_client = None
        self.resolver = None

    def setup_clients(self) -> bool:
        """Initialize and authenticate the source and destination GitLab clients."""
        if self.config.ignore_cert:
            os.environ["GIT_SSL_NO_VERIFY"] = "true"

        try:
            session = build_session(self.config)
            self.source_client = self._connect("GitLab A", self.config.source_url,
                                               self.config.source_token, session)
            self.destination_client = self._connect("GitLab B", self.config.destination_url,
                                                    self.config.destination_token, session)
        except Exception as e:
            console.print(f"❌ GitLab authentication failed: {str(e)}", style="red")
            return False

        self.resolver = NamespaceResolver(GitLabGroupDirectory(self.destination_client))
        return True

    def _connect(self, label: str, url: str, token: str, session: requests.Session) -> gitlab.Gitlab:
        client = gitlab.Gitlab(
            url,
            private_token=token,
            ssl_verify=not self.config.ignore_cert,
            session=session,
        )
        client.auth()
        console.print(f"✅ {label} authentication successful (User: {client.user.username})", style="green")
        return client

    def iter_source_projects(self) -> Iterator[Any]:
        """Yield every non-archived project of GitLab A, page by page."""
        return self.source_client.projects.list(
            archived=False,
            per_page=PROJECTS_PER_PAGE,
            iterator=True,
        )

    def find_destination_project(self, namespace_id: int, path: str) -> Optional[Any]:
        """Return the project ``path`` directly inside group ``namespace_id``, if any."""
        group = self.destination_client.groups.get(namespace_id, lazy=True)
        for candidate in group.projects.list(search=path, get_all=True):
            if candidate.path == path:
                return self.destination_client.projects.get(candidate.id)
        return None

    def ensure_destination_project(self, project_path: str, name: str, namespace_id: int) -> Optional[Any]:
        """Reuse or create the destination project. Returns None on failure."""
        existing = self.find_destination_project(namespace_id, name)
        if existing is not None:
            self.log.info(f"  - Project '{name}' already exists in GitLab B. Using existing project for push.")
            return existing

        self.log.info(f"  - Creating project '{name}' in GitLab B under group ID {namespace_id}...")
        try:
            return self.destination_client.projects.create({
                'name': name,
                'path': name,
                'namespace_id': namespace_id,
            })
        except gitlab.exceptions.GitlabCreateError as e:
            existing = self.find_destination_project(namespace_id, name)
            if existing is not None:
                self.log.warning(f"  - WARNING: Project '{name}' already exists in GitLab B. Proceeding to push.")
                return existing
            self.log.error(project_path, f"Failed to create project in GitLab B. API response: {e.error_message}")
            return None

    def push_remote(self, http_url: str, ssh_url: str) -> str:
        if self.config.use_ssh_push:
            return ssh_url
        return with_credentials(http_url, self.config.destination_token)

    def configure_mirror(self, mirror: MirrorClone, http_url: str, ssh_url: str):
        self.log.info("  - Setting LFS lock verification for the destination.")
        mirror.set_config(f"lfs.{http_url}/info/lfs.locksverify", "true")

        if self.config.ignore_cert:
            mirror.set_config(f"http.{http_url}.sslVerify", "false")
            mirror.set_config(f"http.{ssh_url}.sslVerify", "false")
            if self.config.resolve_domain:
                domain = self.config.resolve_domain
                mirror.set_config(f"http.{domain}.extraHeader", f"Host: {domain}")

    def transfer_lfs_objects(self, mirror: MirrorClone, project_path: str, remote_url: str):
        try:
            count = mirror.lfs_file_count()
        except git.exc.GitCommandError as e:
            self.log.warning(f"  - WARNING: Could not list Git LFS files: {e.stderr.strip() if e.stderr else e}")
            return
        self.log.info(f"  - Found {count} Git LFS objects to push.")
        if count == 0:
            self.log.info("  - No Git LFS objects found to push.")
            return

        self.log.info("  - Fetching Git LFS objects...")
        try:
            mirror.lfs_install()
        except git.exc.GitCommandError as e:
            self.log.error(project_path, f"Failed to install Git LFS in the mirror: {e.stderr.strip() if e.stderr else e}")
            return
        try:
            mirror.lfs_fetch_all()
        except git.exc.GitCommandError:
            self.log.warning("  - WARNING: 'git lfs fetch' failed. This is okay if the project does not use LFS.")

        self.log.info("  - Pushing Git LFS objects...")
        try:
            mirror.lfs_push_all(remote_url)
        except git.exc.GitCommandError:
            self.log.error(project_path, "Failed to push Git LFS objects. Please check if the project uses LFS.")

    def migrate_project(self, project: Any, summary: MigrationSummary) -> bool:
        """Migrate a single source project. Returns False when it failed."""
        project_path = project.path_with_namespace
        name = project.path

        if getattr(project, 'empty_repo', False):
            self.log.info(f"⏭️ SKIPPING: {project_path} is an empty project (no commits).")
            summary.skipped.append(project_path)
            return True

        if self.log.is_migrated(project_path):
            self.log.info(f"✅ SKIPPING: {project_path} is already marked as successfully migrated.")
            summary.skipped.append(project_path)
            return True

        namespace = source_namespace(project_path)
        root_id = self.config.root_group_id

        if self.config.dry_run:
            if namespace == ROOT_NAMESPACE:
                console.print(f"🔍 [DRY RUN] Would migrate project '{name}' directly into root group ID {root_id}.", style="yellow")
            else:
                console.print(f"🔍 [DRY RUN] Would migrate project '{project_path}' by replicating namespace under root group ID {root_id}.", style="yellow")
            summary.planned.append(project_path)
            return True

        self.log.info(f"▶️ PROCESSING: {project_path}")

        try:
            namespace_id = self.resolver.resolve(namespace, root_id)
        except CreationError as e:
            self.log.error(project_path, str(e))
            summary.failed.append(project_path)
            return False
        except gitlab.exceptions.GitlabError as e:
            self.log.error(project_path, f"Failed to resolve namespace '{namespace}': {e.error_message}")
            summary.failed.append(project_path)
            return False
        except requests.RequestException as e:
            self.log.error(project_path, f"Failed to reach GitLab B while resolving namespace '{namespace}': {e}")
            summary.failed.append(project_path)
            return False
        self.log.info(f"  - Target Namespace ID in GitLab B is: {namespace_id}")

        repo_path = self.config.workspace / f"{name}.git"
        self.log.info(f"  - Cloning '{project_path}' from GitLab A...")
        try:
            mirror = MirrorClone.clone(with_credentials(project.http_url_to_repo, self.config.source_token), repo_path)
        except git.exc.GitCommandError:
            self.log.error(project_path, "Failed to clone repository.")
            summary.failed.append(project_path)
            return False

        try:
            if not self._push_to_destination(mirror, project_path, name, namespace_id):
                summary.failed.append(project_path)
                return False
        finally:
            mirror.remove()

        self.log.success(project_path)
        summary.migrated.append(project_path)
        self.log.info(f"✔️ SUCCESS: Migrated {project_path} successfully.", style="green")
        return True

    def _push_to_destination(self, mirror: MirrorClone, project_path: str, name: str, namespace_id: int) -> bool:
        console.print("  - Current branches/tags in the repo:")
        for ref in mirror.branches_and_tags():
            console.print(f"    - {escape(ref)}")

        console.print("  - Current refs in the repo:")
        for ref in mirror.all_refs():
            console.print(f"    - {escape(ref)}")

        self.log.info("  - Cleaning up GitLab internal refs to avoid push errors...")
        removed = strip_internal_refs(mirror.path)
        if removed:
            self.log.info(f"    Removed {len(removed)} refs under {', '.join(INTERNAL_REF_PREFIXES)}")

        try:
            destination = self.ensure_destination_project(project_path, name, namespace_id)
        except gitlab.exceptions.GitlabError as e:
            self.log.error(project_path, f"Failed to look up project in GitLab B. API response: {e.error_message}")
            return False
        except requests.RequestException as e:
            self.log.error(project_path, f"Failed to reach GitLab B while looking up the project: {e}")
            return False
        if destination is None:
            return False

        http_url = destination.http_url_to_repo
        ssh_url = destination.ssh_url_to_repo
        try:
            self.configure_mirror(mirror, http_url, ssh_url)
            remote_url = self.push_remote(http_url, ssh_url)
            self.transfer_lfs_objects(mirror, project_path, remote_url)

            self.log.info("  - Pushing to new repository at GitLab B...")
            mirror.push_mirror(remote_url)
        except git.exc.GitCommandError as e:
            self.log.error(project_path, f"Failed to push repository: {e.stderr.strip() if e.stderr else e}")
            return False

        self.log.info(f"Repo url: {http_url}")
        return True

    def run(self) -> MigrationSummary:
        """Migrate every source project and return the run summary."""
        summary = MigrationSummary()

        self.config.workspace.mkdir(parents=True, exist_ok=True)
        self.log.prepare()

        if not self.setup_clients():
            summary.authenticated = False
            return summary

        console.print(f"\n📥 Fetching all projects from GitLab A ({self.config.source_url})...")
        for project in self.iter_source_projects():
            self.migrate_project(project, summary)

        self.log.info("---------------------------------")
        self.log.info("Migration script finished.")
        self.log.info(f"Check '{self.log.success_log}' for successfully migrated projects.")
        self.log.info(f"Check '{self.log.error_log}' for any projects that failed.")
        return summary


def display_summary(summary: MigrationSummary, dry_run: bool):
    """Display the per-run totals."""
    table = Table(title="Migration Summary", show_header=True, header_style="bold magenta")
    table.add_column("Result", style="cyan", no_wrap=True)
    table.add_column("Projects", style="white")

    if dry_run:
        table.add_row("Would migrate", str(len(summary.planned)))
    else:
        table.add_row("Migrated", str(len(summary.migrated)))
    table.add_row("Skipped", str(len(summary.skipped)))
    table.add_row("Failed", str(len(summary.failed)))

    console.print(table)
    for path in summary.failed:
        console.print(f"  • {escape(path)}", style="red")


def prompt_missing(config: MigrationConfig):
    """Ask for required settings that were not given as options or environment."""
    if not config.source_url:
        config.source_url = Prompt.ask("[bold]GitLab A instance URL[/bold] (e.g., https://gitlab-a.company.com)")
    if not config.source_token:
        config.source_token = Prompt.ask("[bold]GitLab A personal access token[/bold]", password=True)
    if not config.destination_url:
        config.destination_url = Prompt.ask("[bold]GitLab B instance URL[/bold] (e.g., https://gitlab-b.company.com)")
    if not config.destination_token:
        config.destination_token = Prompt.ask("[bold]GitLab B personal access token[/bold]", password=True)
    if config.root_group_id is None:
        config.root_group_id = IntPrompt.ask("[bold]GitLab B target root group ID[/bold]")


@click.command()
@click.option('--source-url', envvar='GITLAB_A_URL', help='URL of the source instance (GitLab A)')
@click.option('--source-token', envvar='GITLAB_A_TOKEN', help='Access token for GitLab A')
@click.option('--destination-url', envvar='GITLAB_B_URL', help='URL of the destination instance (GitLab B)')
@click.option('--destination-token', envvar='GITLAB_B_TOKEN', help='Access token for GitLab B')
@click.option('--root-group-id', envvar='GITLAB_B_TARGET_ROOT_GROUP_ID', type=int,
              help='Group in GitLab B that receives the replicated namespaces')
@click.option('--resolve-ip', envvar='GIT_RESOLVE_IP', help='IP address to use for --resolve-domain')
@click.option('--resolve-domain', envvar='GIT_RESOLVE_DOMAIN', help='Host name that should resolve to --resolve-ip')
@click.option('--dry-run', is_flag=True, help='Preview what would be migrated without making any changes')
@click.option('--use-git/--use-http', 'use_ssh_push', default=True,
              help='Push over SSH (default) or over HTTP with the GitLab B token')
@click.option('--ignore-cert', is_flag=True, help='Skip TLS certificate verification for API calls and git')
@click.option('--workspace', type=click.Path(file_okay=False, path_type=Path), default=DEFAULT_WORKSPACE,
              help='Directory for temporary mirror clones')
@click.option('--log-dir', type=click.Path(file_okay=False, path_type=Path), default='.',
              help='Directory for the success, error and debug logs')
@click.option('--no-prompt', is_flag=True, help='Fail instead of asking for missing settings')
def main(source_url, source_token, destination_url, destination_token, root_group_id,
         resolve_ip, resolve_domain, dry_run, use_ssh_push, ignore_cert, workspace, log_dir, no_prompt):
    """GitLab to GitLab Project Migration Tool"""

    config = MigrationConfig(
        source_url=source_url,
        source_token=source_token,
        destination_url=destination_url,
        destination_token=destination_token,
        root_group_id=root_group_id,
        resolve_ip=resolve_ip,
        resolve_domain=resolve_domain,
        dry_run=dry_run,
        use_ssh_push=use_ssh_push,
        ignore_cert=ignore_cert,
        workspace=workspace.resolve(),
        log_dir=log_dir.resolve(),
    )

    mode_text = "DRY RUN MODE - No actual changes will be made" if dry_run else "Migration Mode"
    mode_style = "yellow" if dry_run else "blue"

    console.print(Panel.fit(
        f"[bold blue]GitLab to GitLab Project Migration Tool[/bold blue]\n\n"
        f"[{mode_style}]{mode_text}[/{mode_style}]\n\n"
        "This tool migrates all projects from GitLab A to GitLab B,\n"
        "replicating the group structure under the target root group.",
        border_style=mode_style
    ))

    if config.missing() and not no_prompt:
        prompt_missing(config)

    problems = config.problems()
    if problems:
        console.print("❌ ERROR: Configuration is incomplete.", style="red")
        for problem in problems:
            console.print(f"  - {problem}", style="red")
        sys.exit(1)

    migration = GitLabMigration(config)
    summary = migration.run()
    if not summary.authenticated:
        console.print("\n❌ Could not connect to both GitLab instances. Please check the errors above.", style="red")
        sys.exit(1)
    display_summary(summary, dry_run)

    if not summary.ok:
        console.print("\n❌ Some projects failed. Please check the errors above.", style="red")
        sys.exit(1)
    elif dry_run:
        console.print("\n🎯 To perform the actual migration, run the command again without --dry-run", style="blue")


if __name__ == "__main__":
    main()
