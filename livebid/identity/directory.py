"""Identity directory backed by YAML configuration."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml

from ..bidding.models import Identity


@dataclass(frozen=True)
class DirectoryEntry:
    identity: Identity
    active: bool = True


class IdentityDirectory:
    def __init__(self, config_path: Path) -> None:
        self._path = config_path
        self._entries: dict[str, DirectoryEntry] = {}
        self.reload()

    def reload(self) -> None:
        data = yaml.safe_load(self._path.read_text()) or {}
        entries = {}
        for item in data.get("identities", []):
            identity = Identity(
                identity_id=str(item["id"]),
                name=item.get("name", item["id"]),
                email=item.get("email", ""),
                role=item.get("role", "bidder"),
                company=item.get("company"),
            )
            entries[identity.identity_id] = DirectoryEntry(
                identity=identity,
                active=bool(item.get("active", True)),
            )
        self._entries = entries

    def all(self) -> Iterable[DirectoryEntry]:
        return self._entries.values()

    def get(self, identity_id: str) -> Identity | None:
        entry = self._entries.get(identity_id)
        if entry is None or not entry.active:
            return None
        return entry.identity
