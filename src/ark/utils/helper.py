import datetime as _dt
import os

from pathlib import Path
from typing import Dict

DEFAULT_CONFIG_DIR = Path("~/.ark")


def resolve_config_dir(value: str | None = None) -> Path:
    raw = value or os.environ.get("ARK_CONFIG_DIR") or str(DEFAULT_CONFIG_DIR)
    return Path(raw).expanduser().resolve()


def config_paths(config_dir: Path) -> Dict[str, Path]:
    return {
        "config": config_dir / "config.yaml",
        "data": config_dir / "data",
        "db": config_dir / "data" / "ark.db",
        "cache": config_dir / "data" / ".master_key_cache",
        "logs": config_dir / "logs",
        "locks": config_dir / "locks",
        "backup": config_dir / "backup",
    }


def ensure_private_dir(path: Path) -> Path:
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    return path


def utc_now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def parse_iso(value: str) -> _dt.datetime:
    return _dt.datetime.fromisoformat(value.replace("Z", "+00:00"))


def write_private_file(path: Path, data: bytes) -> None:
    """Write ``data`` with mode 0600 via a temp file and an atomic rename."""
    tmp = path.with_name(path.name + ".tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)
