import os
import tempfile

from flask import current_app


def ensure_dir(path: str) -> None:
    """Create directory if missing (mkdir -p equivalent)."""
    os.makedirs(path, exist_ok=True)


def write_atomic(path: str, data, mode: str = "wb") -> None:
    """Write data to a temporary file then atomically rename to target path."""
    dir_path = os.path.dirname(path)
    ensure_dir(dir_path)
    fd, tmp_path = tempfile.mkstemp(dir=dir_path)
    try:
        with os.fdopen(fd, mode) as f:
            f.write(data)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def store_root() -> str:
    return current_app.config["CERT_STORE_ROOT"]


def images_dir() -> str:
    return os.path.join(store_root(), "images")


def templates_dir() -> str:
    return os.path.join(store_root(), "templates")


def artifact_path_for(certificate_number: str) -> str:
    return os.path.join(images_dir(), f"{certificate_number}.png")


def write_artifact(path: str, data: bytes) -> None:
    write_atomic(path, data)
    os.chmod(path, 0o644)


def read_artifact(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()


def artifact_exists(path: str | None) -> bool:
    return bool(path) and os.path.isfile(path)


def is_within(root: str, candidate: str) -> bool:
    """Return True when ``candidate`` resolves to a path inside ``root``."""
    root_real = os.path.realpath(root)
    resolved = os.path.realpath(candidate)
    return resolved == root_real or resolved.startswith(f"{root_real}{os.sep}")
