"""Fetch application source by branch.

By convention the branch name equals the environment identifier.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from swarm_deploy.deploy_errors import PackagingError

logger = logging.getLogger(__name__)

DEFAULT_CHECKOUT_TIMEOUT = 300.0


def build_git_clone_cmd(*, repo_url: str, branch: str, dest: Path) -> list[str]:
    return ["git", "clone", "--depth", "1", "--branch", branch, repo_url, str(dest)]


def git_auth_env(token: str, base: dict[str, str] | None = None) -> dict[str, str]:
    """Child env that sends `token` as a bearer header without putting it in argv."""
    env = dict(os.environ if base is None else base)
    env["GIT_TERMINAL_PROMPT"] = "0"
    if token:
        env["GIT_CONFIG_COUNT"] = "1"
        env["GIT_CONFIG_KEY_0"] = "http.extraHeader"
        env["GIT_CONFIG_VALUE_0"] = f"Authorization: Bearer {token}"
    return env


def checkout(
    repo_url: str,
    *,
    branch: str,
    dest: Path,
    token: str = "",
    timeout: float = DEFAULT_CHECKOUT_TIMEOUT,
) -> Path:
    if dest.exists() and any(dest.iterdir()):
        raise PackagingError(f"Checkout destination is not empty: {dest}")

    cmd = build_git_clone_cmd(repo_url=repo_url, branch=branch, dest=dest)
    logger.info("Checking out %s (branch %s)", repo_url, branch)
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=git_auth_env(token),
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise PackagingError(f"git clone timed out after {timeout}s: {repo_url}") from e
    except FileNotFoundError as e:
        raise PackagingError("git not found on the build host") from e

    if result.returncode != 0:
        err = str(result.stderr or "").strip() or str(result.stdout or "").strip()
        raise PackagingError(f"Failed to check out {repo_url}@{branch}: {err}")
    return dest
