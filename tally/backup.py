"""Versioned JSON backup export and restore."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping

from .database import Database
from .errors import ValidationError
from .models import BackupEntry
from .resources import Clock, from_timestamp, to_timestamp, utc_now

logger = logging.getLogger("tally.backup")

BACKUP_VERSION = "1.0"
MODE_OVERWRITE = "overwrite"
MODE_APPEND = "append"
IMPORT_MODES = (MODE_OVERWRITE, MODE_APPEND)


def _parse_entry(index: int, raw: object) -> BackupEntry:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"Backup resource #{index + 1} must be an object")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(f"Backup resource #{index + 1} is missing a name")

    group = raw.get("group")
    if group is None:
        group = ""
    elif not isinstance(group, str):
        raise ValidationError(f"Backup resource #{index + 1} has an invalid group")

    if raw.get("expire_at") is None:
        raise ValidationError(f"Backup resource #{index + 1} is missing 'expire_at'")
    expire_at = from_timestamp(raw["expire_at"], "expire_at")

    created_at = None
    raw_created = raw.get("created_at")
    if raw_created is not None:
        if isinstance(raw_created, bool) or not isinstance(raw_created, int):
            raise ValidationError(f"Backup resource #{index + 1} has an invalid 'created_at'")
        # Zero or negative means "unknown"; the import time is used instead.
        if raw_created > 0:
            created_at = from_timestamp(raw_created, "created_at")

    return BackupEntry(name=name.strip(), group=group.strip(), expire_at=expire_at, created_at=created_at)


def parse_snapshot(payload: object) -> List[BackupEntry]:
    """Validate a snapshot payload and return its entries in order."""

    if not isinstance(payload, Mapping):
        raise ValidationError("Backup data must be an object")

    version = payload.get("version")
    if version is not None and version != BACKUP_VERSION:
        raise ValidationError(f"Unsupported backup version: {version}")

    resources = payload.get("resources")
    if resources is None:
        return []
    if not isinstance(resources, list):
        raise ValidationError("Backup 'resources' must be a list")

    return [_parse_entry(index, item) for index, item in enumerate(resources)]


class BackupService:
    """Export all resources to a snapshot and restore them from one."""

    def __init__(self, database: Database, *, clock: Clock = utc_now) -> None:
        self._database = database
        self._clock = clock

    def export_backup(self) -> Dict[str, Any]:
        resources = self._database.list_resources()
        return {
            "version": BACKUP_VERSION,
            "export_at": to_timestamp(self._clock()),
            "resources": [
                {
                    "name": resource.name,
                    "group": resource.group,
                    "expire_at": to_timestamp(resource.expire_at),
                    "created_at": to_timestamp(resource.created_at),
                }
                for resource in resources
            ],
        }

    def import_backup(self, mode: object, payload: object) -> Dict[str, Any]:
        """Restore ``payload`` in ``overwrite`` or ``append`` mode.

        The payload is fully validated before the store is touched, and the
        write runs in a single transaction so a failure leaves the previous
        contents in place.
        """

        if mode not in IMPORT_MODES:
            raise ValidationError("Mode must be 'overwrite' or 'append'")

        entries = parse_snapshot(payload)
        now: datetime = self._clock()
        imported = self._database.import_resources(
            entries,
            overwrite=mode == MODE_OVERWRITE,
            now=now,
        )
        logger.info("Restored %s resource(s) from backup (mode=%s)", imported, mode)
        return {
            "message": "Backup restored successfully",
            "imported": imported,
            "mode": mode,
        }


__all__ = [
    "BACKUP_VERSION",
    "BackupService",
    "IMPORT_MODES",
    "MODE_APPEND",
    "MODE_OVERWRITE",
    "parse_snapshot",
]
