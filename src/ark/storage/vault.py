import json
import logging

from typing import Any, Iterable, List

import yaml

from ark.storage.db import Bucket, Database
from ark.utils.dataModels import VALID_FORMATS, VaultEntry
from ark.utils.errors import InvalidFormatError, NotFoundError

logger = logging.getLogger("ark.vault")


def normalize_format(fmt: str) -> str:
    fmt = (fmt or "").lower()
    if fmt not in VALID_FORMATS:
        raise InvalidFormatError(f"invalid format: {fmt}. Supported formats: {', '.join(VALID_FORMATS)}")
    return fmt


def validate_value(value: str, fmt: str) -> None:
    if fmt == "json":
        try:
            json.loads(value)
        except ValueError as exc:
            raise InvalidFormatError(f"value is not valid JSON: {exc}") from exc
    elif fmt == "yaml":
        try:
            yaml.safe_load(value)
        except yaml.YAMLError as exc:
            raise InvalidFormatError(f"value is not valid YAML: {exc}") from exc


def render_value(value: str, fmt: str) -> str:
    """Pretty-print json/yaml values; anything unparsable is shown as stored."""
    if fmt == "json":
        try:
            return json.dumps(json.loads(value), indent=2, ensure_ascii=False)
        except ValueError:
            return value
    if fmt == "yaml":
        try:
            return yaml.safe_dump(yaml.safe_load(value), sort_keys=False).rstrip("\n")
        except yaml.YAMLError:
            return value
    return value


def filter_by_tags(entries: Iterable[VaultEntry], tags: Iterable[str]) -> List[VaultEntry]:
    wanted = list(tags)
    return [e for e in entries if all(e.has_tag(t) for t in wanted)]


class VaultManager:
    """Typed access to the ``vault`` bucket.

    ``get`` is a pure read; callers that want the read-through timestamp
    refresh call ``touch`` explicitly.
    """

    def __init__(self, db: Database):
        self.db = db

    def _save(self, entry: VaultEntry) -> None:
        self.db.set_model(Bucket.VAULT, entry.key, entry)

    def set(self, key: str, value: str, format: str = "text", description: str = "",
            tags: Iterable[str] = ()) -> VaultEntry:
        fmt = normalize_format(format)
        validate_value(value, fmt)
        entry = VaultEntry(key=key, value=value, format=fmt, description=description)
        for tag in tags:
            entry.add_tag(tag)
        self._save(entry)
        logger.debug("stored vault entry %s", key)
        return entry

    def get(self, key: str) -> VaultEntry:
        try:
            return self.db.get_model(Bucket.VAULT, key)
        except NotFoundError:
            raise NotFoundError(f"credential '{key}' not found") from None

    def touch(self, key: str) -> VaultEntry:
        entry = self.get(key)
        entry.touch()
        self._save(entry)
        return entry

    def exists(self, key: str) -> bool:
        return self.db.exists(Bucket.VAULT, key)

    def list(self) -> List[VaultEntry]:
        return [self.get(k) for k in self.db.list(Bucket.VAULT)]

    def search(self, query: str) -> List[VaultEntry]:
        """Entries whose key, description, tags or text value contain ``query`` (case-insensitive)."""
        by_key = set(self.db.search(Bucket.VAULT, query))
        return [e for e in self.list() if e.key in by_key or e.matches_search(query)]

    def delete(self, key: str) -> None:
        if not self.exists(key):
            raise NotFoundError(f"credential '{key}' not found")
        self.db.delete(Bucket.VAULT, key)
        logger.debug("deleted vault entry %s", key)

    def update(self, key: str, value: str | None = None, format: str | None = None,
               description: str | None = None, tags: Iterable[str] | None = None) -> VaultEntry:
        """Update only the fields given; ``tags`` replaces the whole tag list."""
        entry = self.get(key)
        fmt = normalize_format(format) if format is not None else entry.format
        new_value = value if value is not None else entry.value
        if value is not None or format is not None:
            validate_value(new_value, fmt)
        entry.value = new_value
        entry.format = fmt
        if description is not None:
            entry.set_description(description)
        if tags is not None:
            entry.tags = []
            for tag in tags:
                entry.add_tag(tag)
        entry.touch()
        self._save(entry)
        return entry

    def get_by_tag(self, tag: str) -> List[VaultEntry]:
        return [e for e in self.list() if e.has_tag(tag)]

    def get_by_format(self, format: str) -> List[VaultEntry]:
        fmt = normalize_format(format)
        return [e for e in self.list() if e.format == fmt]

    def add_tag(self, key: str, tag: str) -> VaultEntry:
        entry = self.get(key)
        entry.add_tag(tag)
        self._save(entry)
        return entry

    def remove_tag(self, key: str, tag: str) -> VaultEntry:
        entry = self.get(key)
        entry.remove_tag(tag)
        self._save(entry)
        return entry

    def set_metadata(self, key: str, meta_key: str, value: Any) -> VaultEntry:
        entry = self.get(key)
        entry.set_metadata(meta_key, value)
        self._save(entry)
        return entry

    def get_metadata(self, key: str, meta_key: str) -> tuple[Any, bool]:
        return self.get(key).get_metadata(meta_key)

    def clear(self) -> int:
        keys = self.db.list(Bucket.VAULT)
        for key in keys:
            self.db.delete(Bucket.VAULT, key)
        return len(keys)
