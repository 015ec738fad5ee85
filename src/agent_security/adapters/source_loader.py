"""Resolve vet sources to a local directory, cloning remote repositories."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from git import Repo
from git.exc import GitError

from ..discovery import PathNotFound
from ..logger import get_logger

logger = get_logger(__name__)

_REMOTE_URL_RE = re.compile(r"^(?:https?|ssh|git)://|^git@[\w.-]+:")
_GITHUB_SLUG_RE = re.compile(r"^[A-Za-z0-9][\w.-]*/[\w.-]+$")

NPM_INSTALL_ARGS = ["install", "--ignore-scripts", "--no-audit", "--no-fund"]


class RetrievalError(RuntimeError):
    """Raised when a remote source cannot be fetched."""


class SourceLoader:
    """Turn a vet source into a local path for the lifetime of a ``with`` block.

    Local directories are used in place and never modified. Remote sources are
    shallow-cloned into a private temporary directory that is removed when the
    block exits, whatever the outcome.
    """

    def __init__(
        self,
        *,
        npm_bin: str = "npm",
        github_host: str = "https://github.com",
        temp_root: str | os.PathLike[str] | None = None,
        install_timeout: float | None = 300.0,
    ) -> None:
        self.npm_bin = npm_bin
        self.github_host = github_host.rstrip("/")
        self.temp_root = str(temp_root) if temp_root else None
        self.install_timeout = install_timeout

    # ------------------------------------------------------------------
    def is_remote(self, source: str) -> bool:
        if _REMOTE_URL_RE.match(source):
            return True
        return bool(_GITHUB_SLUG_RE.match(source)) and not Path(source).exists()

    # ------------------------------------------------------------------
    def clone_url(self, source: str) -> str:
        if _REMOTE_URL_RE.match(source):
            return source
        return f"{self.github_host}/{source.removesuffix('.git')}.git"

    # ------------------------------------------------------------------
    @contextmanager
    def resolve(self, source: str, *, skip_deps: bool = False) -> Iterator[Path]:
        """Yield a local directory holding ``source``."""

        if not self.is_remote(source):
            path = Path(source).expanduser()
            if not path.exists():
                raise PathNotFound(f"Path not found: {source}")
            yield path.resolve()
            return

        url = self.clone_url(source)
        workdir = Path(tempfile.mkdtemp(prefix="agent-security-vet-", dir=self.temp_root))
        logger.debug("Created vet workspace", path=str(workdir))
        try:
            checkout = workdir / "repo"
            self._clone_repository(url, checkout)
            if not skip_deps:
                self._install_dependencies(checkout)
            yield checkout
        finally:
            self._cleanup(workdir)

    # ------------------------------------------------------------------
    def _clone_repository(self, url: str, destination: Path) -> None:
        logger.info("Cloning repository", url=url)
        try:
            Repo.clone_from(url, destination, depth=1, single_branch=True)
        except GitError as exc:
            raise RetrievalError(f"Failed to clone {url}: {exc}") from exc

    # ------------------------------------------------------------------
    def _install_dependencies(self, checkout: Path) -> None:
        if not (checkout / "package.json").is_file():
            return

        try:
            self._run_command([self.npm_bin, *NPM_INSTALL_ARGS], cwd=checkout)
        except RetrievalError as exc:
            logger.warning("Dependency install failed; scanning without dependencies", error=str(exc))

    # ------------------------------------------------------------------
    def _cleanup(self, workdir: Path) -> None:
        shutil.rmtree(workdir, ignore_errors=True)
        if workdir.exists():  # pragma: no cover - only when the OS refuses removal
            logger.warning("Failed to remove vet workspace", path=str(workdir))
        else:
            logger.debug("Removed vet workspace", path=str(workdir))

    # Command runner -------------------------------------------------------------
    def _run_command(
        self,
        args: List[str],
        *,
        cwd: Path | None = None,
        env: Optional[dict[str, str]] = None,
    ) -> subprocess.CompletedProcess[str]:
        try:
            completed = subprocess.run(
                args,
                cwd=cwd,
                env=env,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.install_timeout,
            )
        except FileNotFoundError as exc:
            raise RetrievalError(f"Executable not found: {args[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            raise RetrievalError(f"Command '{' '.join(args)}' timed out") from exc
        except subprocess.CalledProcessError as exc:
            raise RetrievalError(
                f"Command '{' '.join(args)}' failed with exit code {exc.returncode}"
            ) from exc

        return completed


__all__ = ["NPM_INSTALL_ARGS", "RetrievalError", "SourceLoader"]
