"""Key-value settings access used by the payment gateway factory."""
from __future__ import annotations

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.system_setting import SystemSetting


class SettingsStore(Protocol):
    """Read/write access to persisted string settings."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str, *, actor_id: int | None = None) -> None:
        ...


class DbSettingsStore:
    """Settings backed by the ``system_settings`` table.

    Values are read on every call; writes are added to the session and left
    for the caller to commit.
    """

    def __init__(self, db: Session, *, category: str = "payment") -> None:
        self.db = db
        self.category = category

    def _row(self, key: str) -> SystemSetting | None:
        return self.db.scalars(select(SystemSetting).where(SystemSetting.key == key).limit(1)).first()

    def get(self, key: str) -> str | None:
        row = self._row(key)
        if row is None or row.value == "":
            return None
        return row.value

    def set(self, key: str, value: str, *, actor_id: int | None = None) -> None:
        row = self._row(key)
        if row is None:
            row = SystemSetting(
                key=key,
                value=value,
                data_type="string",
                description=f"Payment setting: {key}",
                category=self.category,
                is_public=False,
                created_by=actor_id,
                updated_by=actor_id,
            )
        else:
            row.value = value
            row.updated_by = actor_id
        self.db.add(row)
        self.db.flush()


class InMemorySettingsStore:
    """Dictionary-backed store for scripts and tests."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.values.get(key) or None

    def set(self, key: str, value: str, *, actor_id: int | None = None) -> None:
        self.values[key] = value


__all__ = ["SettingsStore", "DbSettingsStore", "InMemorySettingsStore"]
