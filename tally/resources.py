"""Lifecycle operations for tracked resources."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Mapping

from .database import Database
from .errors import NotFoundError, ValidationError
from .models import Resource

logger = logging.getLogger("tally.resources")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def from_timestamp(value: object, field: str) -> datetime:
    """Convert integer epoch seconds from the wire into an aware UTC datetime."""

    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"'{field}' must be an integer Unix timestamp")
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise ValidationError(f"'{field}' is out of range") from exc


def to_timestamp(value: datetime) -> int:
    return int(value.timestamp())


@dataclass(frozen=True)
class ResourceView:
    """Response form of a resource with its freshly computed remaining days."""

    id: int
    name: str
    group: str
    expire_at: int
    created_at: int
    remaining_days: int

    @classmethod
    def from_resource(cls, resource: Resource, now: datetime) -> "ResourceView":
        return cls(
            id=resource.id,
            name=resource.name,
            group=resource.group,
            expire_at=to_timestamp(resource.expire_at),
            created_at=to_timestamp(resource.created_at),
            remaining_days=resource.remaining_days(now),
        )


def _clean_name(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("'name' is required and must not be empty")
    return value.strip()


def _clean_group(value: object) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("'group' must be a string")
    return value.strip()


class ResourceService:
    """Create, renew, update, delete and list resources held in a :class:`Database`.

    ``changes`` mappings passed to :meth:`update_resource` and
    :meth:`renew_resource` only contain the fields the client actually sent, so
    an omitted field is distinguishable from one sent as empty or zero.
    """

    def __init__(self, database: Database, *, clock: Clock = utc_now) -> None:
        self._database = database
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def list_resources(self) -> List[ResourceView]:
        now = self.now()
        views = [ResourceView.from_resource(item, now) for item in self._database.list_resources()]
        views.sort(key=lambda view: view.expire_at)
        return views

    def create_resource(
        self,
        *,
        name: object,
        expire_at: object,
        group: object = None,
    ) -> ResourceView:
        cleaned_name = _clean_name(name)
        if expire_at is None:
            raise ValidationError("'expire_at' is required")
        expires = from_timestamp(expire_at, "expire_at")

        resource = self._database.create_resource(
            name=cleaned_name,
            group=_clean_group(group),
            expire_at=expires,
            created_at=self.now(),
        )
        logger.info("Created resource %s (%s) expiring %s", resource.id, resource.name, resource.expire_at)
        return ResourceView.from_resource(resource, self.now())

    def update_resource(self, resource_id: int, changes: Mapping[str, object]) -> ResourceView:
        fields: Dict[str, object] = {}
        if "name" in changes:
            fields["name"] = _clean_name(changes["name"])
        if "group" in changes:
            fields["group"] = _clean_group(changes["group"])
        if "expire_at" in changes:
            if changes["expire_at"] is None:
                raise ValidationError("'expire_at' must not be null")
            fields["expire_at"] = from_timestamp(changes["expire_at"], "expire_at")

        updated = self._database.update_resource(resource_id, **fields)
        if updated is None:
            raise NotFoundError("Resource not found")
        return ResourceView.from_resource(updated, self.now())

    def renew_resource(self, resource_id: int, changes: Mapping[str, object]) -> ResourceView:
        """Move the expiration forward by ``days`` or to an absolute ``expire_at``.

        ``expire_at`` wins when both are supplied. Day-based renewals count
        from the current expiration while it is still in the future, and from
        now once the resource has already expired.
        """

        expire_at = changes.get("expire_at")
        days = changes.get("days")
        if expire_at is None and days is None:
            raise ValidationError("Must provide either 'days' or 'expire_at'")

        resource = self._database.get_resource(resource_id)
        if resource is None:
            raise NotFoundError("Resource not found")

        now = self.now()
        if expire_at is not None:
            new_expire_at = from_timestamp(expire_at, "expire_at")
        else:
            if isinstance(days, bool) or not isinstance(days, int):
                raise ValidationError("'days' must be an integer")
            base = resource.expire_at if resource.expire_at > now else now
            try:
                new_expire_at = base + timedelta(days=days)
            except OverflowError as exc:
                raise ValidationError("'days' is out of range") from exc

        renewed = self._database.update_resource(resource_id, expire_at=new_expire_at)
        if renewed is None:
            raise NotFoundError("Resource not found")
        logger.info("Renewed resource %s until %s", renewed.id, renewed.expire_at)
        return ResourceView.from_resource(renewed, now)

    def delete_resource(self, resource_id: int) -> None:
        if self._database.delete_resource(resource_id):
            logger.info("Deleted resource %s", resource_id)

    def list_groups(self) -> List[str]:
        return self._database.list_groups()


__all__ = [
    "Clock",
    "ResourceService",
    "ResourceView",
    "from_timestamp",
    "to_timestamp",
    "utc_now",
]
