import pytest

from relay.session.errors import (
    InvalidPhaseForJoinError,
    PlayerIdTakenError,
    SessionAlreadyExistsError,
    SessionFullError,
    SessionNotFoundError,
)
from relay.session.models import Phase, PlayerRole
from relay.session.store import SessionStore
from relay.tests.mocks import FakeClock, MockConnection


@pytest.fixture
def clock():
    return FakeClock(start=0.0)


@pytest.fixture
def store(clock):
    return SessionStore(grace_seconds=300, ttl_seconds=3600, clock=clock)


class TestCreateAndDelete:
    def test_create_stamps_clock(self, store, clock):
        clock.advance(42)
        room = store.create_session("ABC1", capacity=3)
        assert room.created_at == 42
        assert room.capacity == 3
        assert room.phase == Phase.WAITING
        assert store.get("ABC1") is room

    def test_duplicate_code_fails_until_deleted(self, store):
        store.create_session("ABC1")
        with pytest.raises(SessionAlreadyExistsError):
            store.create_session("ABC1")

        store.delete_session("ABC1")
        assert store.create_session("ABC1").code == "ABC1"

    def test_delete_is_idempotent(self, store):
        store.create_session("ABC1")
        assert store.delete_session("ABC1") is not None
        assert store.delete_session("ABC1") is None
        assert store.session_count == 0

    def test_for_each_room_visits_every_room(self, store):
        store.create_session("A")
        store.create_session("B")
        seen = []
        store.for_each_room(lambda room: seen.append(room.code))
        assert sorted(seen) == ["A", "B"]


class TestJoin:
    def test_join_missing_code_creates_nothing(self, store):
        with pytest.raises(SessionNotFoundError):
            store.join_session("nonexistent", MockConnection())
        assert store.session_count == 0
        assert store.get("nonexistent") is None

    def test_first_join_is_host_with_requested_id(self, store):
        store.create_session("ABC1")
        result = store.join_session("ABC1", MockConnection(), "h")
        assert result.player.player_id == "h"
        assert result.player.role == PlayerRole.HOST
        assert not result.reconnected

    def test_generated_id_when_none_requested(self, store):
        store.create_session("ABC1")
        result = store.join_session("ABC1", MockConnection())
        assert len(result.player.player_id) == 12

    def test_join_at_capacity_without_vacancy_fails(self, store):
        store.create_session("ABC1")
        store.join_session("ABC1", MockConnection(), "h")
        store.join_session("ABC1", MockConnection(), "g")
        room = store.get("ABC1")

        with pytest.raises(SessionFullError):
            store.join_session("ABC1", MockConnection(), "x")
        assert room.player_count == 2

    def test_join_with_live_player_id_fails(self, store):
        store.create_session("ABC1", capacity=3)
        store.join_session("ABC1", MockConnection(), "h")
        with pytest.raises(PlayerIdTakenError):
            store.join_session("ABC1", MockConnection(), "h")

    def test_same_connection_cannot_take_two_seats(self, store):
        conn = MockConnection()
        store.create_session("ABC1", capacity=3)
        store.join_session("ABC1", conn, "h")
        with pytest.raises(PlayerIdTakenError):
            store.join_session("ABC1", conn, "other")

    def test_reconnect_by_id_rebinds_seat(self, store, clock):
        store.create_session("ABC1")
        store.join_session("ABC1", MockConnection(), "h")
        store.join_session("ABC1", MockConnection(), "g")
        room = store.get("ABC1")
        room.mark_disconnected("h", now=clock())

        new_conn = MockConnection()
        result = store.join_session("ABC1", new_conn, "h")

        assert result.reconnected
        assert result.player.connection is new_conn
        assert result.player.role == PlayerRole.HOST

    def test_anonymous_join_reclaims_vacant_seat(self, store, clock):
        store.create_session("ABC1")
        store.join_session("ABC1", MockConnection(), "h")
        store.join_session("ABC1", MockConnection(), "g")
        store.get("ABC1").mark_disconnected("g", now=clock())

        result = store.join_session("ABC1", MockConnection())

        assert result.reconnected
        assert result.player.player_id == "g"

    def test_host_seated_in_fresh_room(self, store):
        store.create_session("ABC1")

        result = store.join_session("ABC1", MockConnection("h"), "h")

        assert store.get("ABC1") is result.room
        assert result.player.role == PlayerRole.HOST
        assert result.room.seat_order == ["h"]

    def test_anonymous_rejoin_while_waiting_reclaims_host_seat(self, store, clock):
        store.create_session("W1")
        store.join_session("W1", MockConnection(), "h")
        store.get("W1").mark_disconnected("h", now=clock())

        result = store.join_session("W1", MockConnection())

        assert result.reconnected
        assert result.player.player_id == "h"
        assert result.room.seat_order == ["h"]
        assert result.room.phase == Phase.WAITING

    def test_join_without_lazy_sweep_leaves_expired_seat(self, store, clock):
        store.create_session("ABC1")
        store.join_session("ABC1", MockConnection(), "h")
        store.join_session("ABC1", MockConnection(), "g")
        store.get("ABC1").mark_disconnected("g", now=clock())
        clock.advance(301)

        with pytest.raises(SessionFullError):
            store.join_session("ABC1", MockConnection(), "newcomer", lazy_sweep=False)
        assert store.get("ABC1").get_player("g") is not None

    def test_new_player_rejected_after_waiting(self, store, clock):
        store.create_session("ABC1", capacity=3)
        store.join_session("ABC1", MockConnection(), "h")
        store.join_session("ABC1", MockConnection(), "g")
        store.get("ABC1").phase = Phase.SETUP_PLACEMENT

        with pytest.raises(InvalidPhaseForJoinError):
            store.join_session("ABC1", MockConnection(), "late")

    def test_join_expired_room_is_not_found(self, store, clock):
        store.create_session("ABC1")
        store.join_session("ABC1", MockConnection(), "h")
        clock.advance(3601)

        with pytest.raises(SessionNotFoundError):
            store.join_session("ABC1", MockConnection(), "g")
        assert store.get("ABC1") is None

    def test_stale_seat_is_released_before_join(self, store, clock):
        store.create_session("ABC1")
        store.join_session("ABC1", MockConnection(), "h")
        store.join_session("ABC1", MockConnection(), "g")
        store.get("ABC1").mark_disconnected("g", now=clock())
        clock.advance(301)

        result = store.join_session("ABC1", MockConnection(), "newcomer")

        assert not result.reconnected
        assert store.get("ABC1").seat_order == ["h", "newcomer"]


class TestSweep:
    def test_sweep_deletes_ttl_expired_rooms(self, store, clock):
        store.create_session("OLD")
        store.join_session("OLD", MockConnection(), "h")
        clock.advance(1800)
        store.create_session("NEW")
        store.join_session("NEW", MockConnection(), "h")
        clock.advance(1801)

        report = store.sweep()

        assert [(room.code, reason) for room, reason in report.deleted_rooms] == [("OLD", "expired")]
        assert store.get("NEW") is not None

    def test_sweep_deletes_abandoned_rooms(self, store, clock):
        store.create_session("ABC1")
        store.join_session("ABC1", MockConnection(), "h")
        store.get("ABC1").mark_disconnected("h", now=clock())
        clock.advance(301)

        report = store.sweep()

        assert [reason for _, reason in report.deleted_rooms] == ["abandoned"]
        assert store.session_count == 0

    def test_sweep_finishes_battle_with_one_survivor(self, store, clock):
        store.create_session("ABC1")
        store.join_session("ABC1", MockConnection(), "h")
        store.join_session("ABC1", MockConnection(), "g")
        room = store.get("ABC1")
        room.phase = Phase.BATTLE
        room.mark_disconnected("g", now=clock())
        clock.advance(301)

        report = store.sweep()

        assert [p.player_id for _, p in report.removed_players] == ["g"]
        assert report.finished_rooms == [room]
        assert room.phase == Phase.FINISHED
        assert room.winner == "h"

    def test_sweep_within_grace_changes_nothing(self, store, clock):
        store.create_session("ABC1")
        store.join_session("ABC1", MockConnection(), "h")
        store.get("ABC1").mark_disconnected("h", now=clock())
        clock.advance(299)

        assert store.sweep().is_empty
        assert store.get("ABC1").player_count == 1

    def test_sweep_keeps_room_awaiting_its_host(self, store):
        store.create_session("ABC1")

        assert store.sweep().is_empty
        assert store.get("ABC1") is not None
