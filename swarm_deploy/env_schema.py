"""Deterministic parameter/secret schema for swarm deployments.

This module is the single source of truth for:
- which environments exist and which one is the fallback
- which keys an environment parameter file (`config/environments/{env}.yml`) may hold
- which deploy-time knobs are read from `.env.deploy`
- whether keys are mandatory and/or have defaults

Design goals:
- No heuristic classification.
- Unknown keys are errors, not warnings.
- Fail fast with clear error messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

from dotenv import dotenv_values


class EnvName(str, Enum):
    DEV = "dev"
    PROD = "prod"


DEFAULT_ENV = EnvName.DEV


class ParamsEnum(str, Enum):
    # Identity
    APP_ID = "app_id"

    # Controller (internal, behind the proxy)
    CONTROLLER_HOST = "controller_host"
    CONTROLLER_PORT = "controller_port"
    CONTROLLER_COMMAND = "controller_command"
    VERBOSE = "verbose"
    DYNAMIC_PORT_RANGE = "dynamic_port_range"
    PAYLOAD_FILE = "payload_file"

    # Proxy (public, TLS-terminating)
    PROXY_HOST = "proxy_host"
    PROXY_PORT = "proxy_port"
    PUBLIC_PATH = "public_path"
    ENDPOINTS_FILE = "endpoints_file"
    CERT_FILE = "cert_file"

    # Image
    BASE_IMAGE = "base_image"
    NODE_VERSION = "node_version"
    APP_DIR = "app_dir"
    SOURCE_PATHS = "source_paths"

    # Target host
    REMOTE_DIR = "remote_dir"
    REMOTE_USER = "remote_user"


class DeployVarsEnum(str, Enum):
    SWARM_ENV = "SWARM_ENV"
    SWARM_CONFIG_DIR = "SWARM_CONFIG_DIR"
    SWARM_SOURCE_DIR = "SWARM_SOURCE_DIR"
    SWARM_REPO_URL = "SWARM_REPO_URL"
    SWARM_REMOTE_DIR = "SWARM_REMOTE_DIR"
    SWARM_COMMAND_TIMEOUT = "SWARM_COMMAND_TIMEOUT"
    SWARM_PROBE_HTTPS = "SWARM_PROBE_HTTPS"
    SWARM_PROBE_INSECURE = "SWARM_PROBE_INSECURE"


class SecretsEnum(str, Enum):
    API_KEY = "API_KEY"
    HOST_ADDRESS = "HOST_ADDRESS"
    HOST_CREDENTIAL = "HOST_CREDENTIAL"

    # Only needed when the source is checked out with --repo-url.
    GIT_TOKEN = "GIT_TOKEN"


def secret_env_var(env: EnvName | str, key: SecretsEnum) -> str:
    """Process env var name for a secret, e.g. SWARM_PROD_API_KEY."""
    env_value = env.value if isinstance(env, EnvName) else str(env)
    return f"SWARM_{env_value.upper()}_{key.value}"


def secrets_dotenv_name(env: EnvName | str) -> str:
    env_value = env.value if isinstance(env, EnvName) else str(env)
    return f".env.deploy.{env_value}.secrets"


@dataclass(frozen=True)
class ParamSpec:
    key: ParamsEnum
    mandatory: bool
    default: Any = None


class EnvValidationError(ValueError):
    def __init__(self, *, context: str, problems: list[str]):
        super().__init__("; ".join(problems))
        self.context = context
        self.problems = problems

    def format(self) -> str:
        lines = [f"[env] validation failed: {self.context}"]
        for p in self.problems:
            lines.append(f"- {p}")
        return "\n".join(lines)


PARAMS_SCHEMA: tuple[ParamSpec, ...] = (
    ParamSpec(key=ParamsEnum.APP_ID, mandatory=False, default="swarm"),
    ParamSpec(key=ParamsEnum.CONTROLLER_HOST, mandatory=False, default="127.0.0.1"),
    ParamSpec(key=ParamsEnum.CONTROLLER_PORT, mandatory=True),
    ParamSpec(key=ParamsEnum.CONTROLLER_COMMAND, mandatory=False, default="node index.js"),
    ParamSpec(key=ParamsEnum.VERBOSE, mandatory=False, default=False),
    ParamSpec(key=ParamsEnum.DYNAMIC_PORT_RANGE, mandatory=False, default=[3002, 4000]),
    ParamSpec(key=ParamsEnum.PAYLOAD_FILE, mandatory=False, default="/usr/src/swarm/payload.json"),
    ParamSpec(key=ParamsEnum.PROXY_HOST, mandatory=False, default="0.0.0.0"),
    ParamSpec(key=ParamsEnum.PROXY_PORT, mandatory=True),
    ParamSpec(key=ParamsEnum.PUBLIC_PATH, mandatory=True),
    ParamSpec(key=ParamsEnum.ENDPOINTS_FILE, mandatory=False, default="/etc/nginx/endpoints.conf"),
    ParamSpec(key=ParamsEnum.CERT_FILE, mandatory=False, default="swarm"),
    ParamSpec(key=ParamsEnum.BASE_IMAGE, mandatory=False, default="nginx:1.25"),
    ParamSpec(key=ParamsEnum.NODE_VERSION, mandatory=False, default="18"),
    ParamSpec(key=ParamsEnum.APP_DIR, mandatory=False, default="/usr/src/swarm"),
    ParamSpec(key=ParamsEnum.SOURCE_PATHS, mandatory=False, default=["package.json", "index.js"]),
    ParamSpec(key=ParamsEnum.REMOTE_DIR, mandatory=False, default="/tmp/swarm-deploy"),
    ParamSpec(key=ParamsEnum.REMOTE_USER, mandatory=False, default=None),
)


def _schema_keys(schema: Iterable[ParamSpec]) -> set[str]:
    return {spec.key.value for spec in schema}


def parse_dotenv_file(path: Path) -> dict[str, str]:
    """Parse dotenv file strictly.

    - Comments are ignored.
    - Keys are preserved even if they have empty values ("").
    """
    kv: dict[str, str] = {}
    raw = dotenv_values(path)
    for k, v in raw.items():
        if k is None:
            continue
        key = str(k).strip()
        if not key:
            continue
        val = "" if v is None else str(v).strip()
        kv[key] = val
    return kv


def read_dotenv_key(*, dotenv_path: Path, key: str) -> str:
    if not dotenv_path.exists():
        return ""
    raw = dotenv_values(dotenv_path)
    return str(raw.get(key) or "").strip()


def validate_known_keys(schema: Iterable[ParamSpec], kv: Mapping[str, Any], *, context: str) -> None:
    allowed = _schema_keys(schema)
    unknown = sorted([str(k) for k in kv.keys() if k not in allowed])
    if unknown:
        raise EnvValidationError(
            context=context,
            problems=["Unknown key(s): " + ", ".join(unknown)],
        )


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def apply_defaults(schema: Iterable[ParamSpec], kv: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(kv)
    for spec in schema:
        if not _is_blank(out.get(spec.key.value)):
            continue
        if spec.default is None:
            continue
        default = spec.default
        out[spec.key.value] = list(default) if isinstance(default, list) else default
    return out


def validate_required(schema: Iterable[ParamSpec], kv: Mapping[str, Any], *, context: str) -> None:
    missing: list[str] = []
    for spec in schema:
        if not spec.mandatory:
            continue
        if _is_blank(kv.get(spec.key.value)):
            missing.append(spec.key.value)
    if missing:
        raise EnvValidationError(context=context, problems=["Missing mandatory key(s): " + ", ".join(sorted(missing))])


def _port_problem(name: str, value: Any) -> str | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return f"{name} must be an integer (got {value!r})"
    if value < 1 or value > 65535:
        return f"{name} must be in range 1-65535 (got {value})"
    return None


def validate_cross_field_rules(kv: Mapping[str, Any], *, context: str) -> None:
    """Extra validation for rules that can't be expressed with (mandatory/default) alone."""
    problems: list[str] = []

    proxy_port = kv.get(ParamsEnum.PROXY_PORT.value)
    controller_port = kv.get(ParamsEnum.CONTROLLER_PORT.value)
    for name, value in ((ParamsEnum.PROXY_PORT.value, proxy_port), (ParamsEnum.CONTROLLER_PORT.value, controller_port)):
        problem = _port_problem(name, value)
        if problem:
            problems.append(problem)
    if not problems and proxy_port == controller_port:
        problems.append(f"proxy_port and controller_port must differ (both {proxy_port})")

    # Same normalization as build_environment, so "//" is caught here.
    raw_path = str(kv.get(ParamsEnum.PUBLIC_PATH.value) or "").strip()
    public_path = raw_path.rstrip("/")
    if not public_path.startswith("/"):
        problems.append(f"public_path must be a non-root path starting with '/' (got {raw_path!r})")
    elif any(c.isspace() for c in public_path):
        problems.append(f"public_path must not contain whitespace (got {raw_path!r})")

    port_range = kv.get(ParamsEnum.DYNAMIC_PORT_RANGE.value)
    if not (isinstance(port_range, list) and len(port_range) == 2 and all(isinstance(p, int) for p in port_range)):
        problems.append(f"dynamic_port_range must be a [low, high] pair of integers (got {port_range!r})")
    elif port_range[0] > port_range[1]:
        problems.append(f"dynamic_port_range is reversed: {port_range}")
    else:
        for name, value in (("proxy_port", proxy_port), ("controller_port", controller_port)):
            if isinstance(value, int) and port_range[0] <= value <= port_range[1]:
                problems.append(f"{name} {value} overlaps dynamic_port_range {port_range}")

    source_paths = kv.get(ParamsEnum.SOURCE_PATHS.value)
    if not isinstance(source_paths, list) or not all(isinstance(p, str) and p.strip() for p in source_paths):
        problems.append(f"source_paths must be a list of relative paths (got {source_paths!r})")

    if problems:
        raise EnvValidationError(context=context, problems=problems)


def parse_boolish(value: Any, *, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value or "").strip().lower()
    if not normalized:
        return default
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


_BOOLISH = {"1", "true", "yes", "y", "on", "0", "false", "no", "n", "off"}


def validate_deploy_vars(kv: Mapping[str, str], *, context: str) -> None:
    """Check `.env.deploy` content: only known knobs, well-formed values."""
    allowed = {v.value for v in DeployVarsEnum}
    unknown = sorted(k for k in kv if k not in allowed)
    problems: list[str] = []
    if unknown:
        problems.append("Unknown key(s): " + ", ".join(unknown))

    timeout = str(kv.get(DeployVarsEnum.SWARM_COMMAND_TIMEOUT.value) or "").strip()
    if timeout:
        try:
            if float(timeout) <= 0:
                problems.append(f"SWARM_COMMAND_TIMEOUT must be positive (got {timeout!r})")
        except ValueError:
            problems.append(f"SWARM_COMMAND_TIMEOUT must be a number (got {timeout!r})")

    for key in (DeployVarsEnum.SWARM_PROBE_HTTPS, DeployVarsEnum.SWARM_PROBE_INSECURE):
        value = str(kv.get(key.value) or "").strip().lower()
        if value and value not in _BOOLISH:
            problems.append(f"{key.value} must be a boolean (got {value!r})")

    if problems:
        raise EnvValidationError(context=context, problems=problems)
