import base64

from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List

from ark.utils.helper import utc_now

VALID_FORMATS = ("json", "yaml", "text")

DEFAULT_CACHE_TIMEOUT_SECONDS = 300
CONFIG_VERSION = "1.0.0"


def now_iso() -> str:
    return utc_now().isoformat()


@dataclass
class VaultEntry:
    key: str
    value: str
    format: str = "text"
    description: str = ""
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.updated_at:
            self.updated_at = self.created_at

    def touch(self) -> None:
        self.updated_at = now_iso()

    def set_description(self, desc: str) -> None:
        self.description = desc
        self.touch()

    def add_tag(self, tag: str) -> None:
        if tag in self.tags:
            return
        self.tags.append(tag)
        self.touch()

    def remove_tag(self, tag: str) -> None:
        if tag in self.tags:
            self.tags.remove(tag)
            self.touch()

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def set_metadata(self, key: str, value: Any) -> None:
        self.metadata[key] = value
        self.touch()

    def get_metadata(self, key: str) -> tuple[Any, bool]:
        if key in self.metadata:
            return self.metadata[key], True
        return None, False

    def matches_search(self, query: str) -> bool:
        query = query.lower()
        if query in self.key.lower() or query in self.description.lower():
            return True
        if any(query in tag.lower() for tag in self.tags):
            return True
        return self.format == "text" and query in self.value.lower()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "VaultEntry":
        return VaultEntry(
            key=obj["key"],
            value=obj.get("value", ""),
            format=obj.get("format", "text"),
            description=obj.get("description") or "",
            tags=list(obj.get("tags") or []),
            metadata=dict(obj.get("metadata") or {}),
            created_at=obj.get("created_at") or now_iso(),
            updated_at=obj.get("updated_at") or "",
        )


@dataclass
class LockedDirectory:
    path: str
    use_master: bool
    hidden: bool = False
    password_salt: str | None = None  # base64, only for custom-password locks
    locked_at: str = field(default_factory=now_iso)
    last_accessed: str | None = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def salt(self) -> bytes | None:
        if self.password_salt is None:
            return None
        return base64.b64decode(self.password_salt)

    def set_salt(self, salt: bytes) -> None:
        self.password_salt = base64.b64encode(salt).decode()
        self.use_master = False

    def update_last_accessed(self) -> None:
        self.last_accessed = now_iso()

    def set_metadata(self, key: str, value: str) -> None:
        self.metadata[key] = value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "LockedDirectory":
        return LockedDirectory(
            path=obj["path"],
            use_master=bool(obj.get("use_master", False)),
            hidden=bool(obj.get("hidden", False)),
            password_salt=obj.get("password_salt"),
            locked_at=obj.get("locked_at") or now_iso(),
            last_accessed=obj.get("last_accessed"),
            metadata=dict(obj.get("metadata") or {}),
        )


@dataclass
class BackupRecord:
    name: str
    path: str
    size: int
    sha256: str
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "BackupRecord":
        return BackupRecord(
            name=obj["name"],
            path=obj["path"],
            size=int(obj.get("size", 0)),
            sha256=obj.get("sha256", ""),
            created_at=obj.get("created_at") or now_iso(),
        )
