"""Resolve a requested environment name into its immutable parameter set."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from swarm_deploy.deploy_errors import ConfigNotFound
from swarm_deploy.env_schema import (
    DEFAULT_ENV,
    PARAMS_SCHEMA,
    EnvName,
    EnvValidationError,
    ParamsEnum,
    apply_defaults,
    parse_boolish,
    validate_cross_field_rules,
    validate_known_keys,
    validate_required,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Environment:
    name: EnvName
    app_id: str
    controller_host: str
    controller_port: int
    controller_command: str
    proxy_host: str
    proxy_port: int
    public_path: str
    verbose: bool
    dynamic_port_range: tuple[int, int]
    payload_file: str
    endpoints_file: str
    cert_file: str
    base_image: str
    node_version: str
    app_dir: str
    source_paths: tuple[str, ...]
    remote_dir: str
    remote_user: str | None = None

    @property
    def container_name(self) -> str:
        return f"{self.app_id}-{self.name.value}"

    @property
    def image_name(self) -> str:
        return f"{self.app_id}-{self.name.value}"


def available_environments() -> list[str]:
    return [e.value for e in EnvName]


def normalize_env_name(requested: str | None) -> EnvName:
    """Map a free-form selector onto a known environment.

    Unknown or empty selectors never fail the run; they fall back to DEFAULT_ENV.
    """
    candidate = str(requested or "").strip().lower()
    for env in EnvName:
        if env.value == candidate:
            return env
    logger.warning(
        "Unknown environment %r (valid: %s); falling back to '%s'",
        requested,
        ", ".join(available_environments()),
        DEFAULT_ENV.value,
    )
    return DEFAULT_ENV


def find_params_file(config_dir: Path, env: EnvName) -> Path | None:
    for suffix in (".yml", ".yaml"):
        path = config_dir / f"{env.value}{suffix}"
        if path.exists():
            return path
    return None


def load_params(path: Path, *, env: EnvName) -> dict:
    context = f"{env.value} ({path})"
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise EnvValidationError(context=context, problems=[f"Invalid YAML: {e}"]) from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise EnvValidationError(context=context, problems=["Parameter file must be a mapping"])

    validate_known_keys(PARAMS_SCHEMA, raw, context=context)
    params = apply_defaults(PARAMS_SCHEMA, raw)
    validate_required(PARAMS_SCHEMA, params, context=context)
    validate_cross_field_rules(params, context=context)
    return params


def build_environment(env: EnvName, params: dict) -> Environment:
    def p(key: ParamsEnum):
        return params.get(key.value)

    remote_user = str(p(ParamsEnum.REMOTE_USER) or "").strip() or None
    low, high = p(ParamsEnum.DYNAMIC_PORT_RANGE)
    return Environment(
        name=env,
        app_id=str(p(ParamsEnum.APP_ID)).strip(),
        controller_host=str(p(ParamsEnum.CONTROLLER_HOST)).strip(),
        controller_port=int(p(ParamsEnum.CONTROLLER_PORT)),
        controller_command=str(p(ParamsEnum.CONTROLLER_COMMAND)).strip(),
        proxy_host=str(p(ParamsEnum.PROXY_HOST)).strip(),
        proxy_port=int(p(ParamsEnum.PROXY_PORT)),
        public_path=str(p(ParamsEnum.PUBLIC_PATH)).strip().rstrip("/"),
        verbose=parse_boolish(p(ParamsEnum.VERBOSE)),
        dynamic_port_range=(int(low), int(high)),
        payload_file=str(p(ParamsEnum.PAYLOAD_FILE)).strip(),
        endpoints_file=str(p(ParamsEnum.ENDPOINTS_FILE)).strip(),
        cert_file=str(p(ParamsEnum.CERT_FILE)).strip(),
        base_image=str(p(ParamsEnum.BASE_IMAGE)).strip(),
        node_version=str(p(ParamsEnum.NODE_VERSION)).strip(),
        app_dir=str(p(ParamsEnum.APP_DIR)).strip(),
        source_paths=tuple(str(s).strip() for s in p(ParamsEnum.SOURCE_PATHS)),
        remote_dir=str(p(ParamsEnum.REMOTE_DIR)).strip(),
        remote_user=remote_user,
    )


def resolve(requested: str | None, *, config_dir: Path) -> Environment:
    """Resolve `requested` to an Environment.

    Raises ConfigNotFound if the resolved environment has no parameter file;
    there are no sensible defaults for ports and paths.
    """
    env = normalize_env_name(requested)
    path = find_params_file(config_dir, env)
    if path is None:
        raise ConfigNotFound(env=env.value, path=str(config_dir / f"{env.value}.yml"))

    params = load_params(path, env=env)
    environment = build_environment(env, params)
    logger.debug("Resolved environment %s from %s", env.value, path)
    return environment
