"""
Repository: the keyed tables behind the namespace and setting stores.

Tables:
- ``namespaces``: name -> Namespace
- ``settings``: SettingPathKey at version 0 -> Setting (the live record)
- ``archived``: SettingPathKey at the superseded version -> SettingArchived
- ``state``: the global State record

Snapshots are orjson documents; bytes fields are carried as base64 text.

Security Note:
    Snapshots hold ciphertext and wrapped DEKs, never KEKs. Do not log them.
"""
import logging
import os
from pathlib import Path
from typing import Iterator, Optional, Union

import orjson

from .models import Namespace, Setting, SettingArchived, SettingPathKey, State
from .principal import Principal

logger = logging.getLogger("navigator.cose")

SNAPSHOT_VERSION = 1


class MemoryRepository:
    """In-process tables with ordered scans over setting keys."""

    def __init__(self, state: Optional[State] = None):
        self.state: State = state or State()
        self.namespaces: dict[str, Namespace] = {}
        self.settings: dict[SettingPathKey, Setting] = {}
        self.archived: dict[SettingPathKey, SettingArchived] = {}

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    def namespace_count(self) -> int:
        return len(self.namespaces)

    def list_namespaces(self, prev: Optional[str], take: int) -> list[Namespace]:
        """Namespaces in descending name order, strictly before ``prev``."""
        names = sorted(self.namespaces, reverse=True)
        if prev is not None:
            names = [n for n in names if n < prev]
        return [self.namespaces[n] for n in names[:take]]

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting(self, spk: SettingPathKey) -> Optional[Setting]:
        return self.settings.get(spk.current)

    def scan_settings(
        self,
        ns: str,
        scope: Optional[int] = None,
        subject: Optional[Principal] = None,
    ) -> Iterator[tuple[SettingPathKey, Setting]]:
        """Live settings of a namespace, in SettingPathKey order."""
        for spk in sorted(k for k in self.settings if k.ns == ns):
            if scope is not None and spk.scope != scope:
                continue
            if subject is not None and spk.subject != subject:
                continue
            yield spk, self.settings[spk]

    def count_settings(self, ns: str, scope: Optional[int] = None) -> int:
        return sum(
            1 for spk in self.settings
            if spk.ns == ns and (scope is None or spk.scope == scope)
        )

    def archive(self, spk: SettingPathKey, record: SettingArchived) -> None:
        self.archived[spk] = record

    def get_archived(self, spk: SettingPathKey) -> Optional[SettingArchived]:
        return self.archived.get(spk)

    def remove_setting(self, spk: SettingPathKey) -> Optional[Setting]:
        """Drop the live record and every archived version of it."""
        current = spk.current
        for key in [k for k in self.archived if k.current == current]:
            del self.archived[key]
        return self.settings.pop(current, None)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "version": SNAPSHOT_VERSION,
            "state": self.state.to_dict(),
            "namespaces": [ns.to_dict() for ns in self.namespaces.values()],
            "settings": [
                {"path": spk.to_dict(), "setting": s.to_dict()}
                for spk, s in sorted(self.settings.items())
            ],
            "archived": [
                {"path": spk.to_dict(), "archived": a.to_dict()}
                for spk, a in sorted(self.archived.items())
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryRepository":
        version = data.get("version")
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"unsupported snapshot version: {version!r}")
        repo = cls(State.from_dict(data.get("state", {})))
        for item in data.get("namespaces", []):
            ns = Namespace.from_dict(item)
            repo.namespaces[ns.name] = ns
        for item in data.get("settings", []):
            spk = SettingPathKey.from_dict(item["path"])
            repo.settings[spk.current] = Setting.from_dict(item["setting"])
        for item in data.get("archived", []):
            spk = SettingPathKey.from_dict(item["path"])
            repo.archived[spk] = SettingArchived.from_dict(item["archived"])
        return repo

    def dumps(self) -> bytes:
        return orjson.dumps(self.to_dict())

    @classmethod
    def loads(cls, data: bytes) -> "MemoryRepository":
        return cls.from_dict(orjson.loads(data))

    def save(self, path: Union[str, Path]) -> None:
        """Write a snapshot atomically (temp file, then rename)."""
        path = Path(path)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(self.dumps())
        os.replace(tmp, path)
        logger.info(
            "Saved snapshot with %d namespace(s) and %d setting(s) to %s",
            len(self.namespaces), len(self.settings), path,
        )

    @classmethod
    def load(cls, path: Union[str, Path]) -> "MemoryRepository":
        path = Path(path)
        repo = cls.loads(path.read_bytes())
        logger.info(
            "Loaded snapshot with %d namespace(s) and %d setting(s) from %s",
            len(repo.namespaces), len(repo.settings), path,
        )
        return repo
