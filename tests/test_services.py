from datetime import datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from identity import AuthState, Identity
from models import ServiceRecord, ServiceState
from services import (
    AuthorizationService,
    DeletionNotAllowed,
    DuplicateCheckTracker,
    DuplicateDetector,
    InFlightTracker,
    NotAuthenticated,
    OperationInFlight,
    ServiceCreationService,
    ServiceValidationError,
    service_state,
)
from store import RecordNotFound, ServiceFilter, SQLAlchemyServiceStore

UTC = ZoneInfo("UTC")

MEMBER = AuthState.signed_in(Identity(id="u1", first_name="Ana", username="ana", role="member"))
OTHER = AuthState.signed_in(Identity(id="u2", first_name="Bruno", role="member"))
ADMIN = AuthState.signed_in(Identity(id="a1", username="root", role="admin"))


class CountingStore:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def list(self, filters=ServiceFilter()):
        self.calls.append("list")
        return []

    def insert(self, data):
        self.calls.append("insert")
        raise AssertionError("insert should not be reached")

    def update(self, service_id, **fields):
        self.calls.append("update")

    def delete(self, service_id):
        self.calls.append("delete")


def _store(session: Session) -> SQLAlchemyServiceStore:
    return SQLAlchemyServiceStore(session)


def test_first_title_is_included_and_repeat_is_pending() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        first = ServiceCreationService(_store(session), MEMBER).create(
            "MONTAGEM", " 100 ", Decimal("5.00")
        )
        second = ServiceCreationService(_store(session), OTHER).create(
            "PREPARO", "100", Decimal("2.00")
        )

        assert first.title == "100"
        assert first.include_in_total is True
        assert first.username == "ana"
        assert second.include_in_total is False
        assert second.admin_override is False
        assert second.username == "Bruno"
        assert service_state(second) == ServiceState.pending


def test_admin_override_includes_duplicate() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ServiceCreationService(_store(session), MEMBER).create("BARRA", "7", "6.00")
        created = ServiceCreationService(_store(session), ADMIN).create(
            "BARRA", "7", "6.00", admin_override=True
        )

        assert created.include_in_total is True
        assert created.admin_override is True
        assert service_state(created) == ServiceState.authorized_override


def test_override_on_unique_title_is_recorded() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        created = ServiceCreationService(_store(session), ADMIN).create(
            "BARRA", "8", "6.00", admin_override=True
        )

        assert created.include_in_total is True
        assert created.admin_override is True


def test_non_admin_override_is_ignored() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ServiceCreationService(_store(session), ADMIN).create("MONTAGEM", "9", "5.00")
        created = ServiceCreationService(_store(session), MEMBER).create(
            "MONTAGEM", "9", "5.00", admin_override=True
        )

        assert created.include_in_total is False
        assert created.admin_override is False


@pytest.mark.parametrize(
    ("service_type", "title", "price", "field"),
    [
        ("MONTAGEM", "   ", "5.00", "title"),
        ("SOLDA", "10", "5.00", "service_type"),
        ("MONTAGEM", "10", "-1", "price"),
        ("MONTAGEM", "10", "abc", "price"),
        ("MONTAGEM", "10", None, "price"),
    ],
)
def test_invalid_input_never_reaches_the_store(service_type, title, price, field) -> None:
    store = CountingStore()

    with pytest.raises(ServiceValidationError) as excinfo:
        ServiceCreationService(store, MEMBER).create(service_type, title, price)

    assert excinfo.value.field == field
    assert store.calls == []


def test_create_requires_signed_in_user() -> None:
    store = CountingStore()

    with pytest.raises(NotAuthenticated):
        ServiceCreationService(store, AuthState.signed_out()).create("MONTAGEM", "1", "5")

    assert store.calls == []


def test_duplicate_detector_skips_blank_titles() -> None:
    store = CountingStore()

    assert DuplicateDetector(store).find_duplicates("   ") == []
    assert DuplicateDetector(store).find_duplicates(None) == []
    assert store.calls == []


def test_duplicate_detector_matches_trimmed_title_exactly() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ServiceCreationService(_store(session), MEMBER).create("MONTAGEM", "100", "5")
        ServiceCreationService(_store(session), MEMBER).create("MONTAGEM", "1000", "5")

        matches = DuplicateDetector(_store(session)).find_duplicates(" 100 ")

        assert [m.title for m in matches] == ["100"]


def test_authorize_then_revoke_round_trip() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = _store(session)
        ServiceCreationService(store, MEMBER).create("MONTAGEM", "5", "5")
        pending = ServiceCreationService(store, OTHER).create("MONTAGEM", "5", "5")
        service = AuthorizationService(store, ADMIN, tz=UTC)

        assert service.authorize(pending.id) is True
        pending_ids = [r.id for r in store.list(ServiceFilter(include_in_total=False))]
        assert pending.id not in pending_ids

        assert service.revoke(pending.id) is True
        reverted = store.list(ServiceFilter(include_in_total=False))
        assert [r.id for r in reverted] == [pending.id]
        assert reverted[0].admin_override is False


def test_non_admin_cannot_authorize_revoke_or_delete() -> None:
    store = CountingStore()
    service = AuthorizationService(store, MEMBER, tz=UTC)
    record = ServiceRecord(id="x", created_at=datetime.now(timezone.utc))

    assert service.authorize("x") is False
    assert service.revoke("x") is False
    assert service.delete(record) is False
    assert service.can_delete(record) is False
    assert store.calls == []


def test_authorize_unknown_id_raises_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = AuthorizationService(_store(session), ADMIN, tz=UTC)

        with pytest.raises(RecordNotFound):
            service.authorize("missing")


def test_delete_only_in_current_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    now = datetime(2024, 3, 15, tzinfo=timezone.utc)

    with Session(engine) as session:
        old = ServiceRecord(
            title="1",
            service_type="MONTAGEM",
            price=Decimal("5.00"),
            user_id="u1",
            username="ana",
            created_at=datetime(2024, 2, 29, 23, 0, tzinfo=timezone.utc),
        )
        fresh = ServiceRecord(
            title="2",
            service_type="MONTAGEM",
            price=Decimal("5.00"),
            user_id="u1",
            username="ana",
            created_at=datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc),
        )
        session.add_all([old, fresh])
        session.commit()
        store = _store(session)
        service = AuthorizationService(store, ADMIN, tz=UTC, now=now)

        with pytest.raises(DeletionNotAllowed):
            service.delete(old)
        assert service.can_delete(old) is False

        assert service.can_delete(fresh) is True
        assert service.delete(fresh) is True
        assert [r.title for r in store.list()] == ["1"]


def test_rejected_delete_makes_no_store_call() -> None:
    store = CountingStore()
    service = AuthorizationService(
        store, ADMIN, tz=UTC, now=datetime(2024, 3, 15, tzinfo=timezone.utc)
    )
    record = ServiceRecord(id="x", created_at=datetime(2023, 3, 15, tzinfo=timezone.utc))

    with pytest.raises(DeletionNotAllowed):
        service.delete(record)

    assert store.calls == []


def test_duplicate_check_tracker_marks_older_checks_stale() -> None:
    tracker = DuplicateCheckTracker()

    first = tracker.begin("form-a")
    second = tracker.begin("form-a")
    other = tracker.begin("form-b")

    assert not tracker.is_latest("form-a", first)
    assert tracker.is_latest("form-a", second)
    assert tracker.is_latest("form-b", other)


def test_duplicate_check_tracker_evicts_oldest_forms() -> None:
    tracker = DuplicateCheckTracker(max_forms=2)

    seq = tracker.begin("a")
    tracker.begin("b")
    tracker.begin("c")

    assert not tracker.is_latest("a", seq)


def test_in_flight_tracker_rejects_concurrent_claims() -> None:
    tracker = InFlightTracker()

    with tracker.claim("x"):
        assert tracker.is_in_flight("x")
        with pytest.raises(OperationInFlight):
            with tracker.claim("x"):
                pass
        with tracker.claim("y"):
            assert tracker.is_in_flight("y")

    assert not tracker.is_in_flight("x")


def test_three_record_scenario_inclusion_flags() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = _store(session)
        created = [
            ServiceCreationService(store, MEMBER).create("MONTAGEM", "100", "5.00"),
            ServiceCreationService(store, OTHER).create("PREPARO", "100", "2.00"),
            ServiceCreationService(store, MEMBER).create("MONTAGEM", "200", "5.00"),
        ]

        assert [c.include_in_total for c in created] == [True, False, True]
