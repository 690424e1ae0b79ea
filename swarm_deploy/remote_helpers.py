"""Remote shell channel to the target host.

Security note: this module shells out to `ssh`, `rsync` and (for password
credentials) `sshpass`. Host keys are accepted without verification; the
deployment trusts whatever answers at the target address. Changing that
requires distributing known_hosts entries alongside the host secrets.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

TIMEOUT_RETURNCODE = 124
NOT_FOUND_RETURNCODE = 127
SSH_OK_MARKER = "SSH_OK"


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        parts = [s.strip() for s in (self.stdout, self.stderr) if s and s.strip()]
        return "\n".join(parts)


@runtime_checkable
class RemoteChannel(Protocol):
    def connect(self, remote_dir: str, *, timeout: float) -> CommandResult: ...
    def run(self, command: str, *, timeout: float) -> CommandResult: ...
    def upload(self, local_path: Path, remote_dir: str, *, timeout: float) -> CommandResult: ...
    def close(self) -> None: ...


def extract_ssh_hostname(host: str) -> str:
    return host.split("@", 1)[1] if "@" in host else host


def ssh_base_options(*, connect_timeout: int, key_path: str | None = None) -> list[str]:
    opts = [
        "-o", "StrictHostKeyChecking=no",
        "-o", "UserKnownHostsFile=/dev/null",
        "-o", "LogLevel=ERROR",
        "-o", f"ConnectTimeout={int(connect_timeout)}",
    ]
    if key_path:
        opts += ["-i", key_path, "-o", "BatchMode=yes"]
    else:
        opts += ["-o", "PubkeyAuthentication=no", "-o", "PreferredAuthentications=password,keyboard-interactive"]
    return opts


def build_ssh_cmd(*, host: str, remote_command: str, options: list[str] | None = None) -> list[str]:
    return ["ssh", *(options or []), host, remote_command]


def build_rsync_cmd(*, sources: list[Path], host: str, remote_dir: str, options: list[str] | None = None) -> list[str]:
    srcs = [str(p) for p in sources]
    # Trailing slash on remote_dir ensures rsync copies into the dir.
    dest = f"{host}:{remote_dir.rstrip('/')}/"
    cmd = ["rsync", "-az", "--mkpath"]
    if options:
        cmd += ["-e", shlex.join(["ssh", *options])]
    return [*cmd, *srcs, dest]


def build_ssh_connectivity_cmd(*, remote_dir: str) -> str:
    return f"mkdir -p {shlex.quote(remote_dir)} && echo {SSH_OK_MARKER}"


def build_extract_cmd(*, remote_dir: str, archive_name: str, root: str) -> str:
    d = shlex.quote(remote_dir)
    return f"cd {d} && rm -rf {shlex.quote(root)} && tar -xzf {shlex.quote(archive_name)}"


def build_cleanup_cmd(*, remote_dir: str, archive_name: str, root: str) -> str:
    base = remote_dir.rstrip("/")
    return shlex.join(["rm", "-rf", f"{base}/{root}", f"{base}/{archive_name}"])


def build_docker_build_cmd(*, image: str, context_dir: str) -> str:
    return shlex.join(["docker", "build", "-t", image, context_dir])


def build_docker_stop_cmd(*, container: str) -> str:
    return shlex.join(["docker", "stop", container])


def build_docker_rm_cmd(*, container: str) -> str:
    return shlex.join(["docker", "rm", "-f", container])


def build_docker_run_cmd(*, image: str, container: str, port: int, env_name: str) -> str:
    return shlex.join(
        [
            "docker",
            "run",
            "-d",
            "--name",
            container,
            "--restart",
            "unless-stopped",
            "-p",
            f"{port}:{port}",
            "-e",
            f"NODE_ENV={env_name}",
            image,
        ]
    )


def build_docker_prune_cmd() -> str:
    return "docker image prune -f"


def build_docker_ps_cmd(*, container: str) -> str:
    return shlex.join(["docker", "ps", "--filter", f"name=^{container}$", "--format", "{{.Names}} {{.Status}}"])


def build_docker_inspect_fs_cmd(*, container: str, path: str) -> str:
    return shlex.join(["docker", "exec", container, "ls", "-la", path])


def _exec(cmd: list[str], *, timeout: float, env: dict[str, str] | None = None) -> CommandResult:
    try:
        # New session: a Ctrl-C on the build host must not kill a remote step mid-flight.
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
            check=False,
            start_new_session=True,
        )
    except subprocess.TimeoutExpired as e:
        stdout = e.stdout.decode() if isinstance(e.stdout, bytes) else str(e.stdout or "")
        return CommandResult(TIMEOUT_RETURNCODE, stdout, f"Command timed out after {timeout}s")
    except FileNotFoundError:
        return CommandResult(NOT_FOUND_RETURNCODE, "", f"{cmd[0]} not found on the build host")
    return CommandResult(result.returncode, result.stdout or "", result.stderr or "")


class SshChannel:
    """RemoteChannel backed by the local ssh/rsync binaries.

    `credential` is either a path to a private key file or a password. A
    password only ever reaches sshpass through the child environment.
    """

    def __init__(self, *, target: str, credential: str, connect_timeout: int = 15):
        self.target = target
        self._credential = credential
        self.connect_timeout = connect_timeout

    def _key_path(self) -> str | None:
        candidate = Path(self._credential).expanduser()
        try:
            if candidate.is_file():
                return str(candidate)
        except OSError:
            return None
        return None

    def _prepare(self, cmd: list[str]) -> tuple[list[str], dict[str, str] | None]:
        if self._key_path():
            return cmd, None
        env = dict(os.environ)
        env["SSHPASS"] = self._credential
        return ["sshpass", "-e", *cmd], env

    def _options(self) -> list[str]:
        return ssh_base_options(connect_timeout=self.connect_timeout, key_path=self._key_path())

    def connect(self, remote_dir: str, *, timeout: float) -> CommandResult:
        result = self.run(build_ssh_connectivity_cmd(remote_dir=remote_dir), timeout=timeout)
        if result.ok and SSH_OK_MARKER not in result.stdout:
            return CommandResult(1, result.stdout, result.stderr or "Unexpected connectivity check output")
        return result

    def run(self, command: str, *, timeout: float) -> CommandResult:
        logger.debug("ssh: %s", command)
        cmd, env = self._prepare(build_ssh_cmd(host=self.target, remote_command=command, options=self._options()))
        return _exec(cmd, timeout=timeout, env=env)

    def upload(self, local_path: Path, remote_dir: str, *, timeout: float) -> CommandResult:
        logger.debug("rsync %s -> %s", local_path, remote_dir)
        cmd, env = self._prepare(
            build_rsync_cmd(sources=[local_path], host=self.target, remote_dir=remote_dir, options=self._options())
        )
        return _exec(cmd, timeout=timeout, env=env)

    def close(self) -> None:
        self._credential = ""
