"""Drive the target host through the container lifecycle transition.

States are entered in strict order, each only after the previous succeeded:

    CONNECTED -> TRANSFERRED -> BUILT -> OLD_STOPPED -> OLD_REMOVED
              -> NEW_STARTED -> PRUNED -> VERIFIED

A failure up to NEW_STARTED aborts the run with the failing state and the
verbatim remote output. PRUNED and VERIFIED failures are logged only. There is
no rollback: rerunning the whole pipeline is the recovery path, and every
operation is written so that a rerun is safe.

Runs for the same environment must be serialized by the caller; two drivers
targeting the same container name race on stop/remove/run.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from swarm_deploy.artifact_helpers import ARCHIVE_ROOT
from swarm_deploy.deploy_errors import DeploymentCancelled, RemoteCommandError, RemoteConnectError
from swarm_deploy.environment import Environment
from swarm_deploy.packager import Archive
from swarm_deploy.remote_helpers import (
    CommandResult,
    RemoteChannel,
    build_cleanup_cmd,
    build_docker_build_cmd,
    build_docker_inspect_fs_cmd,
    build_docker_prune_cmd,
    build_docker_ps_cmd,
    build_docker_rm_cmd,
    build_docker_run_cmd,
    build_docker_stop_cmd,
    build_extract_cmd,
    build_ssh_connectivity_cmd,
)

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 300.0
DEFAULT_BUILD_TIMEOUT = 1800.0
ABSENT_MARKERS = ("no such container",)


class DeployState(str, Enum):
    PENDING = "PENDING"
    CONNECTED = "CONNECTED"
    TRANSFERRED = "TRANSFERRED"
    BUILT = "BUILT"
    OLD_STOPPED = "OLD_STOPPED"
    OLD_REMOVED = "OLD_REMOVED"
    NEW_STARTED = "NEW_STARTED"
    PRUNED = "PRUNED"
    VERIFIED = "VERIFIED"


STATE_ORDER: tuple[DeployState, ...] = (
    DeployState.CONNECTED,
    DeployState.TRANSFERRED,
    DeployState.BUILT,
    DeployState.OLD_STOPPED,
    DeployState.OLD_REMOVED,
    DeployState.NEW_STARTED,
    DeployState.PRUNED,
    DeployState.VERIFIED,
)
NON_FATAL_STATES = frozenset({DeployState.PRUNED, DeployState.VERIFIED})
# Once OLD_STOPPED starts the old container may be gone; finishing is safer than stopping.
CANCELLABLE_STATES = frozenset(
    {DeployState.CONNECTED, DeployState.TRANSFERRED, DeployState.BUILT, DeployState.OLD_STOPPED}
)


class OpKind(str, Enum):
    CONNECT = "connect"
    UPLOAD = "upload"
    RUN = "run"


class StageStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RemoteOperation:
    state: DeployState
    description: str
    kind: OpKind
    command: str
    tolerate_absent: bool = False
    long_running: bool = False


@dataclass
class StageResult:
    state: DeployState
    status: StageStatus = StageStatus.PENDING
    output: str = ""
    command: str = ""


def plan_operations(env: Environment, archive: Archive, *, remote_dir: str) -> list[RemoteOperation]:
    """Ordered remote operations for one deployment."""
    context_dir = f"{remote_dir.rstrip('/')}/{ARCHIVE_ROOT}"
    return [
        RemoteOperation(
            DeployState.CONNECTED,
            "Open SSH channel and ensure working directory",
            OpKind.CONNECT,
            build_ssh_connectivity_cmd(remote_dir=remote_dir),
        ),
        RemoteOperation(
            DeployState.TRANSFERRED,
            "Copy archive to target host",
            OpKind.UPLOAD,
            f"rsync {archive.path} -> {remote_dir}/",
        ),
        RemoteOperation(
            DeployState.TRANSFERRED,
            "Extract archive",
            OpKind.RUN,
            build_extract_cmd(remote_dir=remote_dir, archive_name=archive.name, root=ARCHIVE_ROOT),
        ),
        RemoteOperation(
            DeployState.BUILT,
            "Build image",
            OpKind.RUN,
            build_docker_build_cmd(image=env.image_name, context_dir=context_dir),
            long_running=True,
        ),
        RemoteOperation(
            DeployState.BUILT,
            "Remove extracted source and archive",
            OpKind.RUN,
            build_cleanup_cmd(remote_dir=remote_dir, archive_name=archive.name, root=ARCHIVE_ROOT),
        ),
        RemoteOperation(
            DeployState.OLD_STOPPED,
            "Stop previous container",
            OpKind.RUN,
            build_docker_stop_cmd(container=env.container_name),
            tolerate_absent=True,
        ),
        RemoteOperation(
            DeployState.OLD_REMOVED,
            "Remove previous container",
            OpKind.RUN,
            build_docker_rm_cmd(container=env.container_name),
            tolerate_absent=True,
        ),
        RemoteOperation(
            DeployState.NEW_STARTED,
            "Start new container",
            OpKind.RUN,
            build_docker_run_cmd(
                image=env.image_name,
                container=env.container_name,
                port=env.proxy_port,
                env_name=env.name.value,
            ),
        ),
        RemoteOperation(
            DeployState.PRUNED,
            "Prune dangling images",
            OpKind.RUN,
            build_docker_prune_cmd(),
        ),
        RemoteOperation(
            DeployState.VERIFIED,
            "List running container",
            OpKind.RUN,
            build_docker_ps_cmd(container=env.container_name),
        ),
        RemoteOperation(
            DeployState.VERIFIED,
            "Inspect container filesystem",
            OpKind.RUN,
            build_docker_inspect_fs_cmd(container=env.container_name, path=env.app_dir),
        ),
    ]


def is_absent_output(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in ABSENT_MARKERS)


class RemoteDeploymentDriver:
    def __init__(
        self,
        channel: RemoteChannel,
        env: Environment,
        archive: Archive,
        *,
        remote_dir: str | None = None,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        build_timeout: float = DEFAULT_BUILD_TIMEOUT,
        probe: Callable[[], CommandResult] | None = None,
        on_stage: Callable[[DeployState], None] | None = None,
    ):
        self.channel = channel
        self.env = env
        self.archive = archive
        self.remote_dir = (remote_dir or env.remote_dir).rstrip("/") or "/"
        self.command_timeout = command_timeout
        self.build_timeout = build_timeout
        self.probe = probe
        self.on_stage = on_stage

        self.state = DeployState.PENDING
        self.commands: list[str] = []
        self.report: list[StageResult] = [StageResult(state=s) for s in STATE_ORDER]
        self.operations = plan_operations(env, archive, remote_dir=self.remote_dir)

    def _result_for(self, state: DeployState) -> StageResult:
        return self.report[STATE_ORDER.index(state)]

    def _skip_from(self, state: DeployState) -> None:
        for s in STATE_ORDER[STATE_ORDER.index(state):]:
            result = self._result_for(s)
            if result.status == StageStatus.PENDING:
                result.status = StageStatus.SKIPPED

    def _timeout_for(self, op: RemoteOperation) -> float:
        if op.long_running:
            return max(self.build_timeout, self.command_timeout)
        return self.command_timeout

    def _execute(self, op: RemoteOperation) -> CommandResult:
        self.commands.append(op.command)
        timeout = self._timeout_for(op)
        if op.kind == OpKind.CONNECT:
            return self.channel.connect(self.remote_dir, timeout=timeout)
        if op.kind == OpKind.UPLOAD:
            return self.channel.upload(self.archive.path, self.remote_dir, timeout=timeout)
        return self.channel.run(op.command, timeout=timeout)

    def _succeeded(self, op: RemoteOperation, result: CommandResult) -> bool:
        if result.ok:
            return True
        if op.tolerate_absent and is_absent_output(result.output):
            logger.info("%s: nothing to do (%s)", op.description, result.output.strip())
            return True
        return False

    def _run_stage(self, state: DeployState) -> tuple[RemoteOperation | None, CommandResult | None, list[str]]:
        outputs: list[str] = []
        for op in (o for o in self.operations if o.state == state):
            logger.debug("[%s] %s", state.value, op.description)
            result = self._execute(op)
            if result.output:
                outputs.append(result.output)
            if not self._succeeded(op, result):
                return op, result, outputs
        return None, None, outputs

    def run(self, cancel: threading.Event | None = None) -> list[StageResult]:
        """Execute every stage in order; returns the per-stage report.

        Raises RemoteConnectError / RemoteCommandError on fatal failures and
        DeploymentCancelled if `cancel` is set before a cancellable stage.
        """
        for state in STATE_ORDER:
            if cancel is not None and cancel.is_set() and state in CANCELLABLE_STATES:
                self._skip_from(state)
                logger.warning("Cancellation requested; stopping before %s", state.value)
                raise DeploymentCancelled(before_state=state.value)

            if self.on_stage is not None:
                self.on_stage(state)

            failed_op, failed_result, outputs = self._run_stage(state)
            stage = self._result_for(state)
            stage.output = "\n".join(outputs)

            if failed_op is None and state == DeployState.VERIFIED and self.probe is not None:
                probe_result = self.probe()
                if probe_result.output:
                    stage.output = "\n".join(filter(None, [stage.output, probe_result.output]))
                if not probe_result.ok:
                    failed_op = RemoteOperation(state, "HTTPS probe", OpKind.RUN, "https probe")
                    failed_result = probe_result

            if failed_op is None:
                stage.status = StageStatus.SUCCEEDED
                self.state = state
                continue

            assert failed_result is not None
            stage.status = StageStatus.FAILED
            stage.command = failed_op.command
            stage.output = failed_result.output

            if state in NON_FATAL_STATES:
                logger.warning(
                    "Stage %s failed (non-fatal): %s\n%s",
                    state.value,
                    failed_op.description,
                    failed_result.output or "<no output>",
                )
                continue

            self._skip_from(state)
            if state == DeployState.CONNECTED:
                raise RemoteConnectError(
                    f"Could not open remote channel: {failed_result.output or 'no output'}",
                    output=failed_result.output,
                )
            raise RemoteCommandError(
                state=state.value,
                command=failed_op.command,
                returncode=failed_result.returncode,
                output=failed_result.output,
            )

        return self.report

    @property
    def succeeded(self) -> bool:
        return all(
            r.status == StageStatus.SUCCEEDED for r in self.report if r.state not in NON_FATAL_STATES
        )

    def describe(self) -> list[str]:
        return [f"{r.state.value:<12} {r.status.value}" for r in self.report]
