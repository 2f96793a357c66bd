"""Shared fixtures for autobuilder tests."""

import hashlib
import io
import tarfile
from pathlib import Path

import pytest

from autobuilder.config import Settings
from autobuilder.recipes import Recipe
from autobuilder.types import Compression


def write_recipe(pkg_dir: Path, name: str, **fields: str) -> Path:
    """Write ``<pkg_dir>/<name>/desc.txt`` from KEY=value pairs."""
    recipe_dir = pkg_dir / name
    recipe_dir.mkdir(parents=True, exist_ok=True)
    lines = [f"NAME = {name}"]
    lines.extend(f"{key.upper()} = {value}" for key, value in fields.items())
    path = recipe_dir / "desc.txt"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def make_tarball(files: dict[str, str], top: str = "hello-1.0") -> bytes:
    """Build a .tar.gz holding ``files`` under a single top directory."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(name=f"{top}/{name}")
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def sha256_of(data: bytes) -> str:
    """Hex SHA-256 of bytes."""
    return hashlib.sha256(data).hexdigest()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary directory, gz artifacts, no backoff."""
    return Settings(
        root=tmp_path / "ab",
        artifact_compression=Compression.GZIP,
        retry_backoff=0,
        parallelism=2,
    )


@pytest.fixture
def source_tarball() -> bytes:
    """A small source archive with a Makefile at its top directory."""
    return make_tarball(
        {
            "Makefile": "all:\n\ttrue\ninstall:\n\ttrue\n",
            "hello.c": "int main(void) { return 0; }\n",
        }
    )


@pytest.fixture
def hello_recipe(source_tarball: bytes) -> Recipe:
    """Recipe pointing at the source tarball fixture."""
    return Recipe(
        name="hello",
        version="1.0",
        url="https://example.com/src/hello-1.0.tar.gz",
        sha256=sha256_of(source_tarball),
    )
