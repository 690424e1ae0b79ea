"""Bundle generated artifacts plus application source into one tarball."""

from __future__ import annotations

import gzip
import hashlib
import io
import logging
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from swarm_deploy.artifact_helpers import ARCHIVE_ROOT, KEY_FILE_MODE, ArtifactSet
from swarm_deploy.deploy_errors import PackagingError

logger = logging.getLogger(__name__)

EXCLUDED_NAMES = frozenset({".git", "node_modules", "__pycache__", ".DS_Store"})
_FILE_MODE = 0o644
_DIR_MODE = 0o755


@dataclass(frozen=True)
class Archive:
    path: Path
    sha256: str
    members: tuple[str, ...]

    @property
    def name(self) -> str:
        return self.path.name


def archive_name(env_name: str) -> str:
    return f"{ARCHIVE_ROOT}-{env_name}.tar.gz"


def check_required_paths(source_tree: Path, required_paths: Iterable[str]) -> None:
    if not source_tree.is_dir():
        raise PackagingError(f"Source tree not found: {source_tree}")
    missing = [p for p in required_paths if not (source_tree / p).exists()]
    if missing:
        raise PackagingError(f"Missing required source path(s) in {source_tree}: {missing}")


def _iter_source_files(source_tree: Path) -> list[tuple[str, Path]]:
    out: list[tuple[str, Path]] = []
    for path in sorted(source_tree.rglob("*")):
        rel = path.relative_to(source_tree)
        if any(part in EXCLUDED_NAMES for part in rel.parts):
            continue
        if path.is_symlink() or not path.is_file():
            continue
        out.append((f"{ARCHIVE_ROOT}/{rel.as_posix()}", path))
    return out


def _tarinfo(name: str, size: int, mode: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name=name)
    info.size = size
    info.mode = mode
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def _dir_entries(names: Iterable[str]) -> list[str]:
    dirs: set[str] = set()
    for name in names:
        parts = name.split("/")[:-1]
        for i in range(1, len(parts) + 1):
            dirs.add("/".join(parts[:i]))
    return sorted(dirs)


def build_tarball(entries: dict[str, bytes], *, key_names: frozenset[str] = frozenset()) -> bytes:
    """Deterministic tar.gz of `entries` (sorted, fixed mtime/owner)."""
    buf = io.BytesIO()
    with gzip.GzipFile(fileobj=buf, mode="wb", mtime=0, filename="") as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for d in _dir_entries(entries.keys()):
                info = _tarinfo(d, 0, _DIR_MODE)
                info.type = tarfile.DIRTYPE
                tar.addfile(info)
            for name in sorted(entries):
                data = entries[name]
                mode = KEY_FILE_MODE if name in key_names else _FILE_MODE
                tar.addfile(_tarinfo(name, len(data), mode), io.BytesIO(data))
    return buf.getvalue()


def package(
    artifact_set: ArtifactSet,
    source_tree: Path,
    *,
    out_dir: Path,
    required_paths: Iterable[str] = (),
) -> Archive:
    """Write `swarm-{env}.tar.gz` into out_dir and return its description.

    Generated artifacts win over source files at the same path.
    """
    check_required_paths(source_tree, required_paths)

    artifacts = artifact_set.files()
    entries: dict[str, bytes] = {}
    for arcname, path in _iter_source_files(source_tree):
        if arcname in artifacts:
            logger.info("Source file %s is replaced by a generated artifact", arcname)
            continue
        try:
            entries[arcname] = path.read_bytes()
        except OSError as e:
            raise PackagingError(f"Failed to read source file {path}: {e}") from e
    entries.update(artifacts)

    key_names = frozenset({artifact_set.key_name})
    payload = build_tarball(entries, key_names=key_names)

    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / archive_name(artifact_set.env_name)
    try:
        path.write_bytes(payload)
    except OSError as e:
        raise PackagingError(f"Failed to write archive {path}: {e}") from e

    digest = hashlib.sha256(payload).hexdigest()
    logger.info("Packaged %d file(s) into %s (sha256 %s)", len(entries), path, digest[:12])
    return Archive(path=path, sha256=digest, members=tuple(sorted(entries)))
