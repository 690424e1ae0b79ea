#!/usr/bin/env python3
"""Deploy the swarm controller to its target host over SSH.

Flow: resolve environment -> load secrets -> generate artifacts -> package
with application source -> copy to the target host -> build image, replace
container, prune, verify.

Configuration resolution for each knob: CLI flag -> env var -> .env.deploy ->
built-in default. Secrets come from SWARM_{ENV}_* env vars or
.env.deploy.{env}.secrets and are dropped when the run ends.

Security note: this script shells out to `ssh`, `rsync` and `sshpass`, and
accepts any host key presented by the target.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import tempfile
import threading
from pathlib import Path

from swarm_deploy.artifact_helpers import generate_artifacts, write_artifacts
from swarm_deploy.deploy_errors import DeployError, DeploymentCancelled, RemoteCommandError
from swarm_deploy.env_schema import DeployVarsEnum, EnvValidationError, SecretsEnum, parse_boolish, read_dotenv_key
from swarm_deploy.environment import available_environments, resolve
from swarm_deploy.health_probe import probe_https
from swarm_deploy.packager import package
from swarm_deploy.remote_driver import DEFAULT_COMMAND_TIMEOUT, DeployState, RemoteDeploymentDriver, StageStatus
from swarm_deploy.remote_helpers import SshChannel
from swarm_deploy.secret_provider import DotenvSecretProvider, load_secret_bundle
from swarm_deploy.vcs_helpers import checkout

logger = logging.getLogger("swarm_deploy")

STEP_COLOR = "\033[95m"
COLOR_RESET = "\033[0m"


def read_deploy_key(*, repo_root: Path, key: str) -> str:
    return read_dotenv_key(dotenv_path=repo_root / ".env.deploy", key=key)


def resolve_setting(cli_value: object, key: DeployVarsEnum, *, repo_root: Path, default: str = "") -> str:
    value = "" if cli_value is None else str(cli_value).strip()
    if not value:
        value = str(os.getenv(key.value) or "").strip()
    if not value:
        value = read_deploy_key(repo_root=repo_root, key=key.value)
    return value or default


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deploy the swarm controller behind an nginx TLS proxy")
    parser.add_argument(
        "--env",
        default=None,
        help=(
            f"Target environment ({', '.join(available_environments())}). "
            "Resolution: CLI -> SWARM_ENV env var -> .env.deploy -> dev. Unknown values fall back to dev."
        ),
    )
    parser.add_argument(
        "--config-dir",
        default=None,
        help="Directory holding {env}.yml parameter files (default: config/environments)",
    )
    parser.add_argument(
        "--source-dir",
        default=None,
        help="Application source tree to package (default: ./app). Ignored when --repo-url is set.",
    )
    parser.add_argument(
        "--repo-url",
        default=None,
        help="Git repository to check out; the branch is the environment name",
    )
    parser.add_argument(
        "--remote-dir",
        default=None,
        help="Working directory on the target host (default: remote_dir from the environment file)",
    )
    parser.add_argument(
        "--command-timeout",
        type=float,
        default=None,
        help=f"Timeout in seconds for each remote command (default: {int(DEFAULT_COMMAND_TIMEOUT)})",
    )
    parser.add_argument(
        "--out-dir",
        default=None,
        help="Keep the archive (or rendered files with --render-only) in this directory",
    )
    parser.add_argument(
        "--render-only",
        action="store_true",
        help="Generate artifacts into --out-dir and stop; nothing is packaged or deployed",
    )
    parser.add_argument(
        "--probe",
        action="store_true",
        help="After deploy, GET the proxy over HTTPS as part of verification (overrides SWARM_PROBE_HTTPS)",
    )
    parser.add_argument(
        "--probe-insecure",
        action="store_true",
        help="Skip certificate verification for --probe (the generated certificate is self-signed)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log every remote command")
    return parser


def _install_cancel_handler(cancel: threading.Event):
    """Route the first Ctrl-C to `cancel`; returns the previous handler (or None)."""
    if threading.current_thread() is not threading.main_thread():
        return None

    def _handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        print("[swarm-deploy] ⚠️ Cancellation requested; stopping at the next safe stage boundary")
        cancel.set()

    return signal.signal(signal.SIGINT, _handler)


def main(argv: list[str] | None = None, repo_root_override: Path | None = None) -> None:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[swarm-deploy] %(levelname)s %(name)s: %(message)s",
    )

    step_number = 0

    def log_step(message: str, *, icon: str = "🚀") -> None:
        nonlocal step_number
        step_number += 1
        print(f"{STEP_COLOR}[swarm-deploy] {icon} Step {step_number}: {message}{COLOR_RESET}")

    def log_info(message: str, *, icon: str = "ℹ️") -> None:
        print(f"[swarm-deploy] {icon} {message}")

    repo_root = repo_root_override or Path(__file__).resolve().parents[1]

    requested_env = resolve_setting(args.env, DeployVarsEnum.SWARM_ENV, repo_root=repo_root)
    config_dir = Path(
        resolve_setting(
            args.config_dir,
            DeployVarsEnum.SWARM_CONFIG_DIR,
            repo_root=repo_root,
            default=str(repo_root / "config" / "environments"),
        )
    )
    repo_url = resolve_setting(args.repo_url, DeployVarsEnum.SWARM_REPO_URL, repo_root=repo_root)
    source_dir = Path(
        resolve_setting(args.source_dir, DeployVarsEnum.SWARM_SOURCE_DIR, repo_root=repo_root, default=str(repo_root / "app"))
    )
    timeout_raw = resolve_setting(args.command_timeout, DeployVarsEnum.SWARM_COMMAND_TIMEOUT, repo_root=repo_root)
    try:
        command_timeout = float(timeout_raw) if timeout_raw else DEFAULT_COMMAND_TIMEOUT
    except ValueError:
        raise SystemExit(f"Invalid command timeout: {timeout_raw!r}")
    if command_timeout <= 0:
        raise SystemExit("--command-timeout must be positive")

    probe_enabled = bool(args.probe) or parse_boolish(
        resolve_setting(None, DeployVarsEnum.SWARM_PROBE_HTTPS, repo_root=repo_root), default=False
    )
    probe_insecure = bool(args.probe_insecure) or parse_boolish(
        resolve_setting(None, DeployVarsEnum.SWARM_PROBE_INSECURE, repo_root=repo_root), default=True
    )

    try:
        env = resolve(requested_env, config_dir=config_dir)
    except EnvValidationError as e:
        raise SystemExit(e.format())
    except DeployError as e:
        raise SystemExit(f"[swarm-deploy] ❌ {e}")

    remote_dir = resolve_setting(args.remote_dir, DeployVarsEnum.SWARM_REMOTE_DIR, repo_root=repo_root, default=env.remote_dir)

    log_step(f"Resolved environment '{env.name.value}'", icon="🧭")
    log_info(f"Container: {env.container_name} (image {env.image_name})")
    log_info(f"Proxy port: {env.proxy_port}, controller {env.controller_host}:{env.controller_port}{env.public_path}")

    provider = DotenvSecretProvider(repo_root)
    secrets = None
    driver: RemoteDeploymentDriver | None = None
    cancel = threading.Event()
    try:
        log_step("Loading secrets", icon="🔐")
        secrets = load_secret_bundle(provider, env.name)
        log_info(f"Secrets loaded for '{env.name.value}' (values are not logged)")

        log_step("Generating artifacts", icon="🏗️")
        artifacts = generate_artifacts(env, secrets)

        if args.render_only:
            out_dir = Path(args.out_dir or (repo_root / "build" / env.name.value))
            written = write_artifacts(artifacts, out_dir)
            log_info(f"Wrote {len(written)} file(s) under {out_dir}")
            print("[swarm-deploy] ✅ Done (render only).")
            return

        with tempfile.TemporaryDirectory(prefix="swarm-deploy-") as work:
            work_dir = Path(work)
            if repo_url:
                log_step(f"Checking out {repo_url} (branch {env.name.value})", icon="📥")
                source_dir = checkout(
                    repo_url,
                    branch=env.name.value,
                    dest=work_dir / "source",
                    token=provider.get_optional(env.name.value, SecretsEnum.GIT_TOKEN),
                )

            log_step("Packaging deployment archive", icon="📦")
            archive = package(
                artifacts,
                source_dir,
                out_dir=Path(args.out_dir) if args.out_dir else work_dir / "out",
                required_paths=env.source_paths,
            )
            log_info(f"Archive: {archive.path} ({len(archive.members)} entries, sha256 {archive.sha256[:12]})")

            probe = None
            if probe_enabled:
                fqdn = secrets.fqdn

                def probe():
                    return probe_https(fqdn=fqdn, port=env.proxy_port, public_path=env.public_path, insecure=probe_insecure)

            channel = SshChannel(target=secrets.ssh_target(env.remote_user), credential=secrets.host_credential)

            def on_stage(state: DeployState) -> None:
                log_step(f"Entering {state.value}", icon="🛰️")

            driver = RemoteDeploymentDriver(
                channel,
                env,
                archive,
                remote_dir=remote_dir,
                command_timeout=command_timeout,
                probe=probe,
                on_stage=on_stage,
            )
            previous_handler = _install_cancel_handler(cancel)
            try:
                driver.run(cancel=cancel)
            finally:
                channel.close()
                if previous_handler is not None:
                    signal.signal(signal.SIGINT, previous_handler)
    except DeploymentCancelled as e:
        raise SystemExit(f"[swarm-deploy] ⚠️ Cancelled before stage {e.state}; the running container was not touched")
    except RemoteCommandError as e:
        raise SystemExit(e.format())
    except EnvValidationError as e:
        raise SystemExit(e.format())
    except DeployError as e:
        stage = getattr(e, "state", "")
        prefix = f"stage {stage} failed: " if stage else ""
        raise SystemExit(f"[swarm-deploy] ❌ {prefix}{e}")
    finally:
        if secrets is not None:
            secrets.scrub()
        if driver is not None:
            for line in driver.describe():
                log_info(line, icon="•")

    failed = [r.state.value for r in driver.report if r.status == StageStatus.FAILED]
    if failed:
        print(f"[swarm-deploy] ⚠️ Done with non-fatal failures: {', '.join(failed)}")
        return
    print("[swarm-deploy] ✅ Done.")


if __name__ == "__main__":
    main()
