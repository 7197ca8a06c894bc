"""Build deployment packages for the function.

Packages are deterministic: entries are sorted and every entry carries the
same timestamp and permissions, so identical sources always produce an
identical zip and an identical ``CodeSha256``. That is what lets a second
deploy of unchanged code issue no update.

When ``install_dependencies`` is set and the source directory holds a
``requirements.txt``, aws-lambda-builders installs the dependencies for the
Lambda target platform (Linux x86_64) and they are packed next to the code.
"""

from __future__ import annotations

import base64
import fnmatch
import hashlib
import logging
import shutil
import tempfile
import zipfile
from collections.abc import Iterable, Iterator
from pathlib import Path

from .exceptions import ConfigurationError
from .models import CodeArtifact, DesiredState

logger = logging.getLogger(__name__)

# Earliest timestamp a zip entry can carry
FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)

DEFAULT_EXCLUDES = (
    "__pycache__",
    "*.pyc",
    ".git",
    ".venv",
    ".pytest_cache",
    ".aws-lambda-component",
)

REQUIREMENTS_FILE = "requirements.txt"


def hash_file(path: str | Path) -> str:
    """Base64-encoded SHA-256 of a file, the encoding Lambda uses for ``CodeSha256``."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return base64.b64encode(digest.digest()).decode("ascii")


def _excluded(relative: Path, excludes: Iterable[str]) -> bool:
    return any(fnmatch.fnmatch(part, pattern) for part in relative.parts for pattern in excludes)


def _collect(root: Path, excludes: Iterable[str]) -> Iterator[tuple[str, Path]]:
    """Yield (archive name, file) pairs under ``root``."""
    for path in root.rglob("*"):
        relative = path.relative_to(root)
        if path.is_file() and not _excluded(relative, excludes):
            yield relative.as_posix(), path


def _write_entry(zf: zipfile.ZipFile, arcname: str, path: Path) -> None:
    info = zipfile.ZipInfo(arcname, date_time=FIXED_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    mode = 0o755 if path.stat().st_mode & 0o111 else 0o644
    info.external_attr = (0o100000 | mode) << 16
    zf.writestr(info, path.read_bytes(), compresslevel=9)


def write_zip(entries: dict[str, Path], output_path: Path) -> Path:
    """
    Write ``entries`` (archive name -> file) to a deterministic zip.

    Returns:
        ``output_path``
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(output_path, "w") as zf:
        for arcname in sorted(entries):
            _write_entry(zf, arcname, entries[arcname])
    return output_path


def install_dependencies(requirements: Path, target: Path, runtime: str) -> None:
    """
    Install ``requirements`` into ``target`` for the Lambda platform.

    Args:
        requirements: Path to a requirements.txt
        target: Directory that receives the installed packages
        runtime: Lambda runtime identifier (e.g. ``python3.12``)
    """
    from aws_lambda_builders.architecture import X86_64
    from aws_lambda_builders.builder import LambdaBuilder

    with tempfile.TemporaryDirectory() as temp_root:
        temp_path = Path(temp_root)
        source_dir = temp_path / "source"
        scratch_dir = temp_path / "scratch"
        source_dir.mkdir()
        scratch_dir.mkdir()

        manifest = source_dir / REQUIREMENTS_FILE
        shutil.copy2(requirements, manifest)

        # aws-lambda-builders requires a source directory; create minimal placeholder
        (source_dir / "__init__.py").touch()

        builder = LambdaBuilder(
            language="python",
            dependency_manager="pip",
            application_framework=None,
        )
        builder.build(
            source_dir=str(source_dir),
            artifacts_dir=str(target),
            scratch_dir=str(scratch_dir),
            manifest_path=str(manifest),
            runtime=runtime,
            architecture=X86_64,
        )

        for leftover in ("__init__.py", REQUIREMENTS_FILE):
            placeholder = target / leftover
            if placeholder.exists():
                placeholder.unlink()


def default_build_dir(src: Path) -> Path:
    """Build directory reused by every pack of the same source directory."""
    key = hashlib.sha256(str(src.resolve()).encode()).hexdigest()[:12]
    return Path(tempfile.gettempdir()) / "aws-lambda-component" / key


def pack(
    src: str | Path,
    shims: Iterable[str | Path] = (),
    output_dir: str | Path | None = None,
    *,
    runtime: str | None = None,
    install: bool = False,
    excludes: Iterable[str] = DEFAULT_EXCLUDES,
) -> Path:
    """
    Pack a source directory into a deployment zip.

    Args:
        src: Source directory, or an existing ``.zip`` which is used as-is
        shims: Extra files added at the root of the archive
        output_dir: Where to write the zip (default: a per-source build directory
            under the system temp directory, holding only the latest zip)
        runtime: Lambda runtime, required when ``install`` is set
        install: Install ``requirements.txt`` dependencies into the package
        excludes: File and directory name patterns left out of the archive

    Returns:
        Path of the zip. Its name is derived from its content, so a changed
        package never reuses an S3 key.

    Raises:
        ConfigurationError: If ``src`` or a shim does not exist
    """
    src_path = Path(src)
    if src_path.suffix == ".zip":
        if not src_path.is_file():
            raise ConfigurationError("File does not exist", field="src", value=str(src))
        return src_path.resolve()
    if not src_path.is_dir():
        raise ConfigurationError("Directory does not exist", field="src", value=str(src))

    excludes = tuple(excludes)
    entries = dict(_collect(src_path, excludes))

    for shim in shims:
        shim_path = Path(shim)
        if not shim_path.is_file():
            raise ConfigurationError("File does not exist", field="shims", value=str(shim))
        entries[shim_path.name] = shim_path

    out_dir = Path(output_dir) if output_dir else default_build_dir(src_path)

    with tempfile.TemporaryDirectory() as deps_root:
        requirements = src_path / REQUIREMENTS_FILE
        if install and requirements.is_file():
            if not runtime:
                raise ConfigurationError("Installing dependencies needs a runtime")
            deps_dir = Path(deps_root)
            logger.info("Installing %s for %s", requirements, runtime)
            install_dependencies(requirements, deps_dir, runtime)
            for arcname, path in _collect(deps_dir, excludes):
                entries.setdefault(arcname, path)

        staging = write_zip(entries, out_dir / "package.zip")

    digest = hashlib.sha256(staging.read_bytes()).hexdigest()[:16]
    output_path = staging.with_name(f"{digest}.zip")
    staging.replace(output_path)
    if output_dir is None:
        for stale in out_dir.glob("*.zip"):
            if stale != output_path:
                stale.unlink()
    logger.info("Packed %d file(s) from %s into %s", len(entries), src_path, output_path)
    return output_path


class Packager:
    """Turns the packaging inputs of a DesiredState into a CodeArtifact."""

    def __init__(self, output_dir: str | Path | None = None, install: bool = False) -> None:
        self.output_dir = output_dir
        self.install = install

    def package(self, desired: DesiredState) -> CodeArtifact:
        path = pack(
            desired.src,
            desired.shims,
            self.output_dir,
            runtime=desired.runtime,
            install=self.install,
        )
        return CodeArtifact(path=path, code_hash=hash_file(path), bucket=desired.bucket)
