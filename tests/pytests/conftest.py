from __future__ import annotations

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).parents[2]


def pytest_configure() -> None:
    # Allow tests to import `swarm_deploy.*` without installing the project.
    sys.path.append(str(REPO_ROOT))


class FakeChannel:
    """Records every remote call; answers from `responses` keyed by command substring."""

    def __init__(self, responses=None, *, connect_result=None, upload_result=None):
        from swarm_deploy.remote_helpers import CommandResult

        self._ok = CommandResult(0, "ok", "")
        self.responses = dict(responses or {})
        self.connect_result = connect_result or CommandResult(0, "SSH_OK", "")
        self.upload_result = upload_result or self._ok
        self.calls: list[tuple[str, str]] = []
        self.timeouts: list[float] = []
        self.closed = False

    def connect(self, remote_dir, *, timeout):
        self.calls.append(("connect", remote_dir))
        self.timeouts.append(timeout)
        return self.connect_result

    def upload(self, local_path, remote_dir, *, timeout):
        self.calls.append(("upload", str(local_path)))
        self.timeouts.append(timeout)
        return self.upload_result

    def run(self, command, *, timeout):
        self.calls.append(("run", command))
        self.timeouts.append(timeout)
        for needle, result in self.responses.items():
            if needle in command:
                return result
        return self._ok

    def close(self):
        self.closed = True

    @property
    def run_commands(self) -> list[str]:
        return [c for kind, c in self.calls if kind == "run"]


@pytest.fixture(autouse=True)
def _clean_swarm_env(monkeypatch):
    import os

    for key in list(os.environ):
        if key.startswith("SWARM_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def repo_root() -> Path:
    return REPO_ROOT


@pytest.fixture
def config_dir() -> Path:
    return REPO_ROOT / "config" / "environments"


@pytest.fixture
def dev_env(config_dir):
    from swarm_deploy.environment import resolve

    return resolve("dev", config_dir=config_dir)


@pytest.fixture
def secrets():
    from swarm_deploy.secret_provider import SecretBundle

    return SecretBundle(api_key="k1", host_address="dev.example.com", host_credential="pw")


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    src = tmp_path / "src"
    (src / "public").mkdir(parents=True)
    (src / "lib").mkdir()
    (src / "node_modules" / "left-pad").mkdir(parents=True)
    (src / "package.json").write_text('{"name": "swarm"}\n', encoding="utf-8")
    (src / "index.js").write_text("require('./lib/server');\n", encoding="utf-8")
    (src / "lib" / "server.js").write_text("module.exports = {};\n", encoding="utf-8")
    (src / "public" / "index.html").write_text("<h1>swarm</h1>\n", encoding="utf-8")
    (src / "node_modules" / "left-pad" / "index.js").write_text("", encoding="utf-8")
    (src / "Dockerfile").write_text("FROM scratch\n", encoding="utf-8")
    return src


@pytest.fixture
def fake_channel_cls():
    return FakeChannel
