"""Domain models for the expiration tracker."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class User:
    """Represents the account stored in the tally database."""

    id: int
    username: str
    created_at: datetime


@dataclass(frozen=True)
class Resource:
    """A tracked item with an expiration instant."""

    id: int
    name: str
    group: str
    expire_at: datetime
    created_at: datetime

    def remaining_days(self, now: datetime) -> int:
        """Whole days left until expiry, rounded up. Negative once expired."""

        delta = (self.expire_at - now).total_seconds()
        return math.ceil(delta / SECONDS_PER_DAY)


@dataclass(frozen=True)
class BackupEntry:
    """A single resource inside a backup snapshot. Ids are never carried."""

    name: str
    group: str
    expire_at: datetime
    created_at: Optional[datetime] = None


__all__ = ["BackupEntry", "Resource", "SECONDS_PER_DAY", "User"]
