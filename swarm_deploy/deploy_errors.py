"""Error taxonomy for a swarm deployment run.

Every fatal error aborts the run; the CLI turns them into a non-zero exit with
the failing stage named.
"""

from __future__ import annotations


class DeployError(Exception):
    """Base class for all orchestration failures."""


class ConfigNotFound(DeployError):
    def __init__(self, *, env: str, path: str):
        super().__init__(f"No parameter file for environment '{env}' (looked for {path})")
        self.env = env
        self.path = path


class SecretMissingError(DeployError):
    def __init__(self, *, env: str, kind: str, hint: str = ""):
        msg = f"Missing secret '{kind}' for environment '{env}'"
        if hint:
            msg += f" ({hint})"
        super().__init__(msg)
        self.env = env
        self.kind = kind


class ArtifactGenerationError(DeployError):
    pass


class PackagingError(DeployError):
    pass


class RemoteConnectError(DeployError):
    def __init__(self, message: str, *, output: str = ""):
        super().__init__(message)
        self.state = "CONNECTED"
        self.output = output


class RemoteCommandError(DeployError):
    def __init__(self, *, state: str, command: str, returncode: int, output: str):
        super().__init__(f"Stage {state} failed (exit {returncode}): {command}")
        self.state = state
        self.command = command
        self.returncode = returncode
        self.output = output

    def format(self) -> str:
        lines = [f"[deploy] stage {self.state} failed (exit {self.returncode})", f"$ {self.command}"]
        out = self.output.rstrip()
        lines.append(out if out else "<no output>")
        return "\n".join(lines)


class DeploymentCancelled(DeployError):
    def __init__(self, *, before_state: str):
        super().__init__(f"Deployment cancelled before stage {before_state}")
        self.state = before_state
