from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tally.database import Database
from tally.errors import NotFoundError, ValidationError
from tally.resources import ResourceService, to_timestamp


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture()
def service(tmp_path: Path, clock: FakeClock) -> ResourceService:
    database = Database(tmp_path / "tally.sqlite3")
    database.initialize()
    return ResourceService(database, clock=clock)


def _in_days(clock: FakeClock, days: float) -> int:
    return to_timestamp(clock() + timedelta(days=days))


def test_remaining_days_is_recomputed_on_every_list(service: ResourceService, clock: FakeClock) -> None:
    created = service.create_resource(name="example.com", group="domains", expire_at=_in_days(clock, 10))
    assert created.remaining_days == 10

    clock.advance(hours=1)
    assert service.list_resources()[0].remaining_days == 10

    clock.advance(hours=35)
    assert service.list_resources()[0].remaining_days == 9

    clock.advance(days=10)
    assert service.list_resources()[0].remaining_days == -1


def test_list_is_sorted_by_expiration(service: ResourceService, clock: FakeClock) -> None:
    for name, days in [("late", 90), ("expired", -5), ("soon", 3), ("middle", 30)]:
        service.create_resource(name=name, expire_at=_in_days(clock, days))

    listed = service.list_resources()

    assert [view.name for view in listed] == ["expired", "soon", "middle", "late"]
    expirations = [view.expire_at for view in listed]
    assert expirations == sorted(expirations)


def test_create_sets_created_at_and_strips_fields(service: ResourceService, clock: FakeClock) -> None:
    view = service.create_resource(name="  VPN  ", group=" subscriptions ", expire_at=_in_days(clock, 1))

    assert view.name == "VPN"
    assert view.group == "subscriptions"
    assert view.created_at == to_timestamp(clock())
    assert view.id > 0


def test_create_requires_name_and_expiration(service: ResourceService, clock: FakeClock) -> None:
    with pytest.raises(ValidationError):
        service.create_resource(name="   ", expire_at=_in_days(clock, 1))
    with pytest.raises(ValidationError):
        service.create_resource(name=None, expire_at=_in_days(clock, 1))
    with pytest.raises(ValidationError):
        service.create_resource(name="license", expire_at=None)


def test_renew_by_days_extends_future_expiration(service: ResourceService, clock: FakeClock) -> None:
    created = service.create_resource(name="example.org", expire_at=_in_days(clock, 5))

    renewed = service.renew_resource(created.id, {"days": 30})

    assert renewed.expire_at == created.expire_at + 30 * 86_400
    assert renewed.remaining_days == 35


def test_renew_by_days_restarts_from_now_when_expired(service: ResourceService, clock: FakeClock) -> None:
    created = service.create_resource(name="example.net", expire_at=_in_days(clock, 5))
    clock.advance(days=40)

    renewed = service.renew_resource(created.id, {"days": 30})

    assert renewed.expire_at == to_timestamp(clock()) + 30 * 86_400
    assert renewed.remaining_days == 30


def test_renew_accepts_negative_days(service: ResourceService, clock: FakeClock) -> None:
    created = service.create_resource(name="trial", expire_at=_in_days(clock, 10))

    renewed = service.renew_resource(created.id, {"days": -3})

    assert renewed.expire_at == created.expire_at - 3 * 86_400


def test_renew_prefers_absolute_expiration(service: ResourceService, clock: FakeClock) -> None:
    created = service.create_resource(name="cert", expire_at=_in_days(clock, 5))
    target = _in_days(clock, 365)

    renewed = service.renew_resource(created.id, {"days": 30, "expire_at": target})

    assert renewed.expire_at == target


def test_renew_requires_days_or_expiration(service: ResourceService, clock: FakeClock) -> None:
    created = service.create_resource(name="cert", expire_at=_in_days(clock, 5))

    with pytest.raises(ValidationError):
        service.renew_resource(created.id, {})
    with pytest.raises(ValidationError):
        service.renew_resource(created.id, {"days": None, "expire_at": None})


def test_renew_unknown_resource(service: ResourceService) -> None:
    with pytest.raises(NotFoundError):
        service.renew_resource(999, {"days": 1})


def test_update_only_touches_supplied_fields(service: ResourceService, clock: FakeClock) -> None:
    created = service.create_resource(name="db host", group="servers", expire_at=_in_days(clock, 20))

    renamed = service.update_resource(created.id, {"name": "database host"})
    assert renamed.name == "database host"
    assert renamed.group == "servers"
    assert renamed.expire_at == created.expire_at
    assert renamed.created_at == created.created_at

    ungrouped = service.update_resource(created.id, {"group": ""})
    assert ungrouped.group == ""
    assert ungrouped.name == "database host"

    moved = service.update_resource(created.id, {"expire_at": _in_days(clock, 2)})
    assert moved.remaining_days == 2


def test_update_rejects_empty_name_and_missing_resource(service: ResourceService, clock: FakeClock) -> None:
    created = service.create_resource(name="keep", expire_at=_in_days(clock, 2))

    with pytest.raises(ValidationError):
        service.update_resource(created.id, {"name": ""})
    with pytest.raises(ValidationError):
        service.update_resource(created.id, {"expire_at": None})
    with pytest.raises(NotFoundError):
        service.update_resource(created.id + 100, {"name": "other"})


def test_delete_is_idempotent(service: ResourceService, clock: FakeClock) -> None:
    created = service.create_resource(name="gone", expire_at=_in_days(clock, 2))

    service.delete_resource(created.id)
    service.delete_resource(created.id)

    assert service.list_resources() == []


def test_groups_are_distinct_and_never_null(service: ResourceService, clock: FakeClock) -> None:
    assert service.list_groups() == []

    service.create_resource(name="a", expire_at=_in_days(clock, 1))
    assert service.list_groups() == []

    service.create_resource(name="b", group="domains", expire_at=_in_days(clock, 1))
    service.create_resource(name="c", group="domains", expire_at=_in_days(clock, 1))
    service.create_resource(name="d", group="licenses", expire_at=_in_days(clock, 1))

    assert service.list_groups() == ["domains", "licenses"]


def test_out_of_range_timestamp_is_rejected(service: ResourceService) -> None:
    with pytest.raises(ValidationError):
        service.create_resource(name="forever", expire_at=10**20)
