#!/usr/bin/env python3
"""
Bump a Homebrew formula of this tap to a new GitHub release.

DESCRIPTION:
    Resolves the release version (argument or newest vX.Y.Z tag), downloads
    the source tarball and both bottles to compute their SHA256 checksums,
    rewrites Formula/<formula>.rb from the formula template, then commits
    and pushes the change. Every state-changing step asks for confirmation
    when running on a terminal.

USAGE:
    update-formula FORMULA [VERSION] [--dry-run] [--owner OWNER]
                   [--formula-dir DIR] [--timeout SECONDS] [--verbose]

ARGUMENTS:
    formula          Required. Formula name, e.g. "danny".
    version          Optional. Release version, with or without leading "v".
                     Defaults to the newest tag of the repository.
    --dry-run, -d    Fetch and hash everything but do not write or commit.
    --owner          GitHub owner of the formula's repository
                     (default: $HOMEBREW_TAP_OWNER or foxworth-uni).
    --formula-dir    Directory holding the formulas (default: Formula).
    --timeout        Network timeout in seconds (default: 60).
    --verbose, -v    Log redirects, tag lookups and git commands.

EXAMPLES:
    # Update danny to the latest tag, asking before each step
    update-formula danny

    # Preview an update to v0.0.8 without touching anything
    update-formula danny 0.0.8 --dry-run

EXIT CODES:
    0 - Success, or stopped by answering "no" to a confirmation
    1 - Usage error, missing formula, download failure or git failure
  130 - Interrupted with Ctrl-C outside a prompt
"""

import argparse
import logging
import os
import re
import subprocess
import sys
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

import requests

from formula_file import FormulaError, read_formula, render_formula, write_formula
from release_sha256 import (
    DEFAULT_TIMEOUT,
    FetchError,
    detect_latest_version,
    fetch_sha256,
    git_ls_remote_tags,
    release_artifacts,
    source_url,
)

logger = logging.getLogger(__name__)

DEFAULT_OWNER = "foxworth-uni"
DEFAULT_VERSION = "0.0.1"
DEFAULT_BRANCH = "main"
DEFAULT_REMOTE = "origin"
BOX_WIDTH = 68
INTERRUPTED = 130
VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")


class GitError(Exception):
    """Raised when a git command exits with a non-zero status."""


class Colors:
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    GRAY = "\033[90m"
    BOLD = "\033[1m"
    RESET = "\033[0m"


class Console:
    """Terminal output and prompts with optional ANSI colors."""

    def __init__(self, out=None, stdin=None, color=None):
        self.out = out or sys.stdout
        self.stdin = stdin or sys.stdin
        if color is None:
            color = hasattr(self.out, "isatty") and self.out.isatty()
        self.color = color

    def _paint(self, code, text):
        if not self.color:
            return text
        return f"{code}{text}{Colors.RESET}"

    def red(self, text):
        return self._paint(Colors.RED, text)

    def green(self, text):
        return self._paint(Colors.GREEN, text)

    def yellow(self, text):
        return self._paint(Colors.YELLOW, text)

    def blue(self, text):
        return self._paint(Colors.BLUE, text)

    def magenta(self, text):
        return self._paint(Colors.MAGENTA, text)

    def cyan(self, text):
        return self._paint(Colors.CYAN, text)

    def gray(self, text):
        return self._paint(Colors.GRAY, text)

    def bold(self, text):
        return self._paint(Colors.BOLD, text)

    def echo(self, text="", end="\n"):
        self.out.write(f"{text}{end}")
        self.out.flush()

    def ask(self, prompt):
        """Prompt for one line of input; None on EOF or Ctrl-C."""
        self.echo(prompt, end="")
        try:
            line = self.stdin.readline()
        except KeyboardInterrupt:
            self.echo()
            return None
        if not line:
            return None
        return line.rstrip("\r\n")


class GitRepository:
    """The git operations of an update, run in the tap's working tree."""

    def __init__(self, cwd=None):
        self.cwd = cwd

    def _run(self, *args, check=True):
        cmd = ["git", *args]
        logger.debug("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, cwd=self.cwd)
        except OSError as e:
            raise GitError(f"Could not run {' '.join(cmd)}: {e}") from e
        if check and result.returncode != 0:
            raise GitError(f"{' '.join(cmd)} exited with status {result.returncode}")
        return result.returncode

    def diff(self, path):
        try:
            self._run("diff", path, check=False)
        except GitError as e:
            logger.warning("Skipping diff: %s", e)

    def add(self, path):
        self._run("add", path)

    def commit(self, message):
        self._run("commit", "-m", message)

    def push(self, remote=DEFAULT_REMOTE, branch=DEFAULT_BRANCH):
        self._run("push", remote, branch)


@dataclass(frozen=True)
class RunConfig:
    formula: str
    version: Optional[str] = None
    dry_run: bool = False
    interactive: bool = True
    owner: str = DEFAULT_OWNER
    formula_dir: str = "Formula"
    timeout: float = DEFAULT_TIMEOUT

    @property
    def repo(self) -> str:
        return f"{self.owner}/{self.formula}"

    @property
    def formula_path(self) -> str:
        return os.path.join(self.formula_dir, f"{self.formula}.rb")

    @property
    def commit_message(self) -> str:
        return f"chore: update {self.formula} to v{self.version}"


def truncate_sha(sha: str) -> str:
    return f"{sha[:16]}...{sha[48:64]}"


class FormulaUpdater:
    """
    Runs one formula update:

        resolve version -> fetch source -> fetch ARM64 bottle -> fetch x86_64
        bottle -> extract metadata -> write -> commit -> push

    A failed download or a bad formula aborts with exit status 1. Answering
    "no" to a confirmation stops the run with status 0.
    """

    def __init__(self, config: RunConfig, console: Console,
                 session: Optional[requests.Session] = None,
                 repository: Optional[GitRepository] = None,
                 list_tags: Callable[[str], str] = git_ls_remote_tags):
        self.config = config
        self.console = console
        self.session = session or requests.Session()
        self.repository = repository or GitRepository()
        self.list_tags = list_tags

    def confirm(self, prompt: str) -> bool:
        c = self.console
        if not self.config.interactive:
            c.echo(c.gray(f"→ {prompt} [auto-yes]"))
            return True

        answer = c.ask(f"{c.yellow('?')} {prompt} (y/N): ")
        if answer is None:
            c.echo()
            return False
        return answer.strip().lower() in ("y", "yes")

    def resolve_version(self) -> str:
        c = self.console
        if self.config.version:
            return self.config.version.lstrip("v")

        c.echo(c.blue(f"📦 Detecting latest version for {self.config.formula}..."))
        version = detect_latest_version(
            self.config.repo,
            list_tags=self.list_tags,
            session=self.session,
            timeout=self.config.timeout,
        ) or DEFAULT_VERSION

        if not self.config.interactive:
            c.echo(c.cyan(f"🎯 Using detected version: {version}"))
            return version

        while True:
            answer = c.ask(f"{c.cyan('🎯')} Version [{version}]: ")
            if not answer or not answer.strip():
                return version
            typed = answer.strip().lstrip("v")
            if VERSION_PATTERN.match(typed):
                return typed
            c.echo(c.red(f"✗ Not a version: {answer.strip()} (expected MAJOR.MINOR.PATCH)"))

    def fetch(self, label: str, url: str) -> Optional[str]:
        """Hash one artifact, printing a progress line. None on failure."""
        c = self.console
        c.echo(f"{c.cyan('🍺')} {label.ljust(30)} ", end="")
        try:
            sha = fetch_sha256(url, session=self.session, timeout=self.config.timeout)
        except FetchError as e:
            c.echo(c.red(f"✗ {e}"))
            c.echo(c.gray(f"   {url}"))
            return None
        c.echo(c.green(f"✓ {sha[:16]}..."))
        return sha

    def fetch_checksums(self, version: str) -> Optional[List[str]]:
        c = self.console
        repo = self.config.repo
        hints = [
            [f"❌ Failed to fetch source. Does v{version} exist?"],
            ["❌ Bottles not ready. Check GitHub Actions:",
             f"   https://github.com/{repo}/actions"],
            ["❌ Failed to fetch x86_64 bottle"],
        ]

        checksums = []
        artifacts = release_artifacts(repo, self.config.formula, version)
        for artifact, hint in zip(artifacts, hints):
            sha = self.fetch(artifact.label, artifact.url)
            if sha is None:
                c.echo(c.red(hint[0]))
                for line in hint[1:]:
                    c.echo(c.gray(line))
                return None
            checksums.append(sha)
        return checksums

    def show_summary(self, version: str, checksums: List[str], previous_sha: str):
        c = self.console

        def row(plain, styled=None):
            c.echo("│ " + (styled or plain) + " " * max(BOX_WIDTH - 1 - len(plain), 0) + "│")

        source, arm64, x86_64 = checksums
        title = f"{self.config.formula} v{version}"
        c.echo()
        c.echo("┌" + "─" * BOX_WIDTH + "┐")
        row(title, f"{c.bold(self.config.formula)} v{version}")
        c.echo("├" + "─" * BOX_WIDTH + "┤")
        row(f"Source:  {truncate_sha(source)}")
        row(f"ARM64:   {truncate_sha(arm64)}")
        row(f"x86_64:  {truncate_sha(x86_64)}")
        c.echo("└" + "─" * BOX_WIDTH + "┘")
        if previous_sha == source:
            c.echo(c.gray("   Source checksum unchanged"))
        c.echo()

    def show_preview(self, formula):
        c = self.console
        c.echo(c.yellow("🔍 DRY RUN: Preview of formula:"))
        c.echo(c.gray("─" * 70))
        c.echo(c.gray(f"class {formula.class_name} < Formula"))
        c.echo(c.gray(f'  desc "{formula.desc}"'))
        c.echo(c.gray(f'  url "...v{formula.version}.tar.gz"'))
        c.echo(c.gray(f'  sha256 "{formula.sha256[:16]}..."'))
        c.echo(c.gray("  # ... (full formula would be written)"))
        c.echo(c.gray("─" * 70))

    def run(self) -> int:
        c = self.console
        config = self.config
        path = config.formula_path

        if not os.path.exists(path):
            c.echo(c.red(f"❌ Formula not found: {path}"))
            return 1

        version = self.resolve_version()
        self.config = config = replace(config, version=version)

        c.echo()
        c.echo(c.bold(c.magenta(f"Updating {config.formula} to v{version}")))
        if config.dry_run:
            c.echo(c.yellow("🔍 DRY RUN MODE - No changes will be made"))
        c.echo()

        if not self.confirm(f"Fetch SHA256 hashes for v{version}?"):
            return 0
        c.echo()

        checksums = self.fetch_checksums(version)
        if checksums is None:
            return 1

        try:
            current = read_formula(path, config.formula)
            updated = current.with_release(version, *checksums, url=source_url(config.repo, version))
            content = render_formula(updated, config.repo)
        except FormulaError as e:
            c.echo(c.red(f"❌ {e}"))
            return 1

        self.show_summary(version, checksums, current.sha256)

        if not self.confirm(f"Update {path}?"):
            return 0

        try:
            if config.dry_run:
                c.echo(c.yellow(f"🔍 DRY RUN: Would write to {path}"))
                c.echo(c.green("✅ Formula would be updated!"))
                c.echo()
                self.show_preview(updated)
            else:
                write_formula(path, content)
                c.echo(c.green("✅ Formula updated!"))
                c.echo()
                self.repository.diff(path)
            c.echo()

            if not self.confirm("Commit changes?"):
                return 0
            if config.dry_run:
                c.echo(c.yellow(f"🔍 DRY RUN: Would commit with message: {config.commit_message}"))
            else:
                self.repository.add(path)
                self.repository.commit(config.commit_message)
                c.echo(c.green("✅ Committed"))
            c.echo()

            if not self.confirm(f"Push to {DEFAULT_REMOTE}?"):
                return 0
            if config.dry_run:
                c.echo(c.yellow(f"🔍 DRY RUN: Would push to {DEFAULT_REMOTE}/{DEFAULT_BRANCH}"))
            else:
                self.repository.push(DEFAULT_REMOTE, DEFAULT_BRANCH)
        except GitError as e:
            c.echo(c.red(f"❌ {e}"))
            return 1

        c.echo()
        if config.dry_run:
            c.echo(c.green("🚀 [DRY RUN] Would be released!"))
        else:
            c.echo(c.green("🚀 Released!"))
        c.echo(c.gray(f"   brew install {config.owner}/tap/{config.formula}"))
        return 0


class UsageParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def parse_arguments(argv=None):
    parser = UsageParser(
        prog="update-formula",
        description="Update a Homebrew formula of this tap to a new GitHub release.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n  update-formula danny\n  update-formula danny 0.0.8 --dry-run",
    )
    parser.add_argument("formula", nargs="?", help="Formula name (Formula/<formula>.rb)")
    parser.add_argument("version", nargs="?", help="Release version (default: latest vX.Y.Z tag)")
    parser.add_argument("-d", "--dry-run", action="store_true",
                        help="Fetch and hash artifacts without writing, committing or pushing")
    parser.add_argument("--owner", default=os.environ.get("HOMEBREW_TAP_OWNER") or DEFAULT_OWNER,
                        help="GitHub owner of the formula repository (default: %(default)s)")
    parser.add_argument("--formula-dir", default="Formula",
                        help="Directory containing formula files (default: %(default)s)")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT,
                        help="Network timeout in seconds (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def build_config(args, stdin=None) -> RunConfig:
    stdin = stdin or sys.stdin
    interactive = not args.dry_run and hasattr(stdin, "isatty") and stdin.isatty()
    return RunConfig(
        formula=args.formula,
        version=args.version or None,
        dry_run=args.dry_run,
        interactive=interactive,
        owner=args.owner,
        formula_dir=args.formula_dir,
        timeout=args.timeout,
    )


def main(argv=None, console=None, session=None, repository=None,
         list_tags=git_ls_remote_tags) -> int:
    args = parse_arguments(argv)
    console = console or Console()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.formula:
        console.echo(console.red(
            "❌ Usage: update-formula <formula> [version] [--dry-run]"
        ))
        return 1

    config = build_config(args, console.stdin)
    updater = FormulaUpdater(config, console, session=session,
                             repository=repository, list_tags=list_tags)
    try:
        return updater.run()
    except KeyboardInterrupt:
        console.echo()
        console.echo(console.red("❌ Interrupted"))
        return INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
