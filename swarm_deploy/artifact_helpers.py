"""Generate the per-deployment artifact set.

All builders are pure functions of (Environment, SecretBundle); only the TLS
pair differs between two runs with identical inputs.

Layout inside the archive (relative to the `swarm/` root):
- {cert_file}.key / {cert_file}.pem
- config/local-{env}.json
- proxy/conf/nginx.conf
- proxy/conf/endpoints.conf
- Dockerfile
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from swarm_deploy.deploy_errors import ArtifactGenerationError
from swarm_deploy.environment import Environment
from swarm_deploy.nginx_helpers import Block, Comment, Directive, Node, render_config
from swarm_deploy.secret_provider import SecretBundle
from swarm_deploy.tls_helpers import TlsPair, generate_self_signed_pair

logger = logging.getLogger(__name__)

ARCHIVE_ROOT = "swarm"
PROXY_RELOAD_COMMAND = "nginx -s reload"
NGINX_CONF_PATH = "/etc/nginx/nginx.conf"
CERT_DIR = "/etc/nginx/certs"
STATIC_ROOT = "/usr/share/nginx/html"
KEY_FILE_MODE = 0o600


@dataclass(frozen=True)
class ArtifactSet:
    env_name: str
    cert_file: str
    tls: TlsPair = field(repr=False)
    controller_config: str = field(repr=False)
    proxy_config: str
    endpoints_config: str
    dockerfile: str

    @property
    def key_name(self) -> str:
        return f"{ARCHIVE_ROOT}/{self.cert_file}.key"

    def files(self) -> dict[str, bytes]:
        """Relative archive path -> content, in the stable layout."""
        return {
            self.key_name: self.tls.key_pem,
            f"{ARCHIVE_ROOT}/{self.cert_file}.pem": self.tls.cert_pem,
            f"{ARCHIVE_ROOT}/config/local-{self.env_name}.json": self.controller_config.encode("utf-8"),
            f"{ARCHIVE_ROOT}/proxy/conf/nginx.conf": self.proxy_config.encode("utf-8"),
            f"{ARCHIVE_ROOT}/proxy/conf/endpoints.conf": self.endpoints_config.encode("utf-8"),
            f"{ARCHIVE_ROOT}/Dockerfile": self.dockerfile.encode("utf-8"),
        }


def _require(name: str, value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ArtifactGenerationError(f"Missing required value: {name}")
    return value


def _cert_paths(env: Environment) -> tuple[str, str]:
    return f"{CERT_DIR}/{env.cert_file}.pem", f"{CERT_DIR}/{env.cert_file}.key"


def build_controller_config(env: Environment, secrets: SecretBundle) -> dict[str, Any]:
    low, high = env.dynamic_port_range
    return {
        "controller": {
            "host": _require("controller_host", env.controller_host),
            "port": _require("controller_port", env.controller_port),
        },
        "proxy": {
            "host": _require("proxy_host", env.proxy_host),
            "port": _require("proxy_port", env.proxy_port),
            "fqdn": _require("host_address", secrets.fqdn),
        },
        "defaults": {
            "verbose": bool(env.verbose),
            "ports": [low, high],
            "reloadCommand": PROXY_RELOAD_COMMAND,
            "payloadFile": _require("payload_file", env.payload_file),
            "nginxEndpointsFile": _require("endpoints_file", env.endpoints_file),
            "certFile": f"{_require('cert_file', env.cert_file)}.pem",
            "keyFile": f"{env.cert_file}.key",
        },
        "api": {
            "key": _require("api_key", secrets.api_key),
        },
    }


def render_controller_config(env: Environment, secrets: SecretBundle) -> str:
    return json.dumps(build_controller_config(env, secrets), indent=2) + "\n"


def build_proxy_config_tree(env: Environment, secrets: SecretBundle) -> list[Node]:
    cert_path, key_path = _cert_paths(env)
    upstream = f"http://{env.controller_host}:{env.controller_port}/"
    fqdn = _require("host_address", secrets.fqdn)

    server = Block(
        "server",
        children=[
            Directive("listen", env.proxy_port, "ssl"),
            Directive("server_name", fqdn),
            Directive("ssl_certificate", cert_path),
            Directive("ssl_certificate_key", key_path),
            Directive("ssl_protocols", "TLSv1.2", "TLSv1.3"),
            Directive("proxy_set_header", "Host", "$host"),
            Directive("proxy_set_header", "X-Real-IP", "$remote_addr"),
            Directive("proxy_set_header", "X-Forwarded-For", "$proxy_add_x_forwarded_for"),
            Directive("proxy_set_header", "X-Forwarded-Proto", "$scheme"),
            Block(
                "location",
                "/",
                children=[
                    Directive("root", STATIC_ROOT),
                    Directive("index", "index.html"),
                ],
            ),
            Block(
                "location",
                f"{env.public_path}/",
                children=[Directive("proxy_pass", upstream)],
            ),
            Comment("Rewritten by the controller at runtime"),
            Directive("include", env.endpoints_file),
        ],
    )

    return [
        Directive("worker_processes", "auto"),
        Directive("pid", "/run/nginx.pid"),
        Block("events", children=[Directive("worker_connections", "1024")]),
        Block(
            "http",
            children=[
                Directive("include", "/etc/nginx/mime.types"),
                Directive("default_type", "application/octet-stream"),
                Directive("sendfile", "on"),
                Directive("keepalive_timeout", "65"),
                server,
            ],
        ),
    ]


def render_proxy_config(env: Environment, secrets: SecretBundle) -> str:
    try:
        return render_config(build_proxy_config_tree(env, secrets))
    except ValueError as e:
        raise ArtifactGenerationError(f"Invalid proxy configuration: {e}") from e


def render_endpoints_placeholder() -> str:
    return ""


def render_dockerfile(env: Environment) -> str:
    cert_path, key_path = _cert_paths(env)
    app_dir = _require("app_dir", env.app_dir)
    controller_command = _require("controller_command", env.controller_command)
    lines = [
        f"FROM {_require('base_image', env.base_image)}",
        "",
        "RUN apt-get update && apt-get install -y --no-install-recommends curl ca-certificates \\",
        f" && curl -fsSL https://deb.nodesource.com/setup_{_require('node_version', env.node_version)}.x | bash - \\",
        " && apt-get install -y --no-install-recommends nodejs \\",
        " && rm -rf /var/lib/apt/lists/*",
        "",
        f"WORKDIR {app_dir}",
        "COPY package*.json ./",
        "RUN npm install --omit=dev",
        "COPY . .",
        "",
        f"COPY proxy/conf/nginx.conf {NGINX_CONF_PATH}",
        f"COPY proxy/conf/endpoints.conf {env.endpoints_file}",
        f"COPY {env.cert_file}.pem {cert_path}",
        f"COPY {env.cert_file}.key {key_path}",
        "",
        f"EXPOSE {_require('proxy_port', env.proxy_port)}",
        "",
        # nginx daemonizes; the controller replaces the shell in the foreground.
        f"CMD {json.dumps(['/bin/sh', '-c', f'nginx && exec {controller_command}'])}",
    ]
    return "\n".join(lines) + "\n"


def generate_artifacts(env: Environment, secrets: SecretBundle, *, tls: TlsPair | None = None) -> ArtifactSet:
    """Build the full artifact set; nothing is written to disk."""
    _require("host_address", secrets.host_address)
    _require("api_key", secrets.api_key)

    controller_config = render_controller_config(env, secrets)
    proxy_config = render_proxy_config(env, secrets)
    dockerfile = render_dockerfile(env)
    if tls is None:
        try:
            tls = generate_self_signed_pair(secrets.fqdn)
        except ValueError as e:
            raise ArtifactGenerationError(str(e)) from e

    logger.debug("Generated artifact set for %s", env.name.value)
    return ArtifactSet(
        env_name=env.name.value,
        cert_file=env.cert_file,
        tls=tls,
        controller_config=controller_config,
        proxy_config=proxy_config,
        endpoints_config=render_endpoints_placeholder(),
        dockerfile=dockerfile,
    )


def write_artifacts(artifact_set: ArtifactSet, out_dir: Path) -> list[Path]:
    written: list[Path] = []
    for rel, content in artifact_set.files().items():
        path = out_dir / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if rel == artifact_set.key_name:
            # Restrict before the key bytes land on disk.
            path.touch(mode=KEY_FILE_MODE, exist_ok=True)
            path.chmod(KEY_FILE_MODE)
        path.write_bytes(content)
        written.append(path)
    return written
