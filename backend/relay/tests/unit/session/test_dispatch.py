import pytest
from pydantic import ValidationError

from relay.messaging.types import ServerEvent
from relay.session.dispatch import Outbound, dispatch_game_data
from relay.session.models import Phase, PlayerRole
from relay.tests.helpers import game_data, make_room


def _recipients(effects: list[Outbound]) -> list[tuple[str, ...]]:
    return [effect.recipients for effect in effects]


class TestBroadcast:
    def test_unknown_type_goes_to_everyone_else(self):
        room = make_room(capacity=3, player_ids=("a", "b", "c"))
        payload = game_data("ABC1", "chat", text="hello")

        effects = dispatch_game_data(room, "b", payload)

        assert effects == [Outbound(message=payload, recipients=("a", "c"))]

    def test_payload_is_forwarded_unchanged(self):
        room = make_room()
        payload = game_data("ABC1", "place-ships", ships=[{"x": 1, "y": 2, "len": 3}])
        original = dict(payload)

        (effect,) = dispatch_game_data(room, "h", payload)

        assert effect.message is payload
        assert payload == original


class TestPeerInfo:
    def test_stores_metadata_and_relays(self):
        room = make_room()
        room.begin_setup_if_full()
        payload = game_data("ABC1", "peer-info", name="Admiral", color="blue")

        effects = dispatch_game_data(room, "g", payload)

        assert room.get_player("g").metadata == {"name": "Admiral", "color": "blue"}
        assert _recipients(effects) == [("h",)]

    def test_role_claim_is_applied(self):
        room = make_room()
        dispatch_game_data(room, "g", game_data("ABC1", "peer-info", role="host"))
        assert room.get_player("g").role == PlayerRole.HOST

    def test_ordinal_role_is_kept_as_metadata_and_relayed(self):
        room = make_room(capacity=3, player_ids=("a", "b", "c"))
        payload = game_data("ABC1", "peer-info", role=1, name="Destroyer")

        effects = dispatch_game_data(room, "b", payload)

        player = room.get_player("b")
        assert player.role == PlayerRole.GUEST
        assert player.metadata == {"role": 1, "name": "Destroyer"}
        assert effects[0] == Outbound(message=payload, recipients=("a", "c"))

    def test_invalid_role_raises_before_mutation(self):
        room = make_room()
        with pytest.raises(ValidationError):
            dispatch_game_data(room, "g", game_data("ABC1", "peer-info", role="admiral", name="x"))
        assert room.get_player("g").metadata == {}

    def test_full_waiting_room_enters_setup(self):
        room = make_room()

        effects = dispatch_game_data(room, "h", game_data("ABC1", "peer-info", name="h"))

        assert room.phase == Phase.SETUP_PLACEMENT
        assert effects[-1].recipients == ("h", "g")
        assert effects[-1].message["event"] == ServerEvent.PHASE_CHANGED
        assert effects[-1].message["phase"] == Phase.SETUP_PLACEMENT


class TestReady:
    def test_battle_starts_when_last_player_ready(self):
        room = make_room()
        room.begin_setup_if_full()

        first = dispatch_game_data(room, "h", game_data("ABC1", "ready"))
        assert _recipients(first) == [("g",)]
        assert room.phase == Phase.SETUP_PLACEMENT

        second = dispatch_game_data(room, "g", game_data("ABC1", "ready"))
        assert room.phase == Phase.BATTLE
        assert _recipients(second) == [("h",), ("h", "g")]
        phase_changed = second[1].message
        assert phase_changed["phase"] == Phase.BATTLE
        assert phase_changed["turn_order"] == ["h", "g"]
        assert phase_changed["current_turn_index"] == 0

    def test_duplicate_ready_after_battle_does_nothing(self):
        room = make_room()
        room.begin_setup_if_full()
        dispatch_game_data(room, "h", game_data("ABC1", "ready"))
        dispatch_game_data(room, "g", game_data("ABC1", "ready"))

        assert dispatch_game_data(room, "g", game_data("ABC1", "ready")) == []
        assert room.phase == Phase.BATTLE


class TestPhaseChange:
    def test_override_is_applied_and_relayed(self):
        room = make_room()
        payload = game_data("ABC1", "phase-change", phase="battle", turn_order=["g", "h"], current_turn_index=0)

        effects = dispatch_game_data(room, "h", payload)

        assert room.phase == Phase.BATTLE
        assert room.current_player_id == "g"
        assert effects == [Outbound(message=payload, recipients=("g",))]

    def test_malformed_fields_raise(self):
        room = make_room()
        with pytest.raises(ValidationError):
            dispatch_game_data(room, "h", game_data("ABC1", "phase-change", phase="sinking"))
        assert room.phase == Phase.WAITING


class TestTargetedActions:
    def test_attack_defaults_to_sole_opponent(self):
        room = make_room()
        effects = dispatch_game_data(room, "h", game_data("ABC1", "attack", x=3, y=4))
        assert _recipients(effects) == [("g",)]
        assert room.pending_actions == {"g": "h"}

    def test_attack_with_explicit_target_is_unicast(self):
        room = make_room(capacity=3, player_ids=("a", "b", "c"))
        effects = dispatch_game_data(room, "a", game_data("ABC1", "attack", target="c", x=0, y=0))
        assert _recipients(effects) == [("c",)]

    def test_attack_without_target_in_crowded_room_is_dropped(self):
        room = make_room(capacity=3, player_ids=("a", "b", "c"))
        assert dispatch_game_data(room, "a", game_data("ABC1", "attack", x=0, y=0)) == []

    def test_attack_on_self_is_dropped(self):
        room = make_room()
        assert dispatch_game_data(room, "h", game_data("ABC1", "attack", target="h")) == []
        assert room.pending_actions == {}

    def test_result_returns_to_attacker(self):
        room = make_room(capacity=3, player_ids=("a", "b", "c"))
        dispatch_game_data(room, "a", game_data("ABC1", "attack", target="c", x=0, y=0))

        effects = dispatch_game_data(room, "c", game_data("ABC1", "attack-result", hit=True))

        assert _recipients(effects) == [("a",)]
        assert room.pending_actions == {}

    def test_result_with_explicit_target(self):
        room = make_room(capacity=3, player_ids=("a", "b", "c"))
        effects = dispatch_game_data(room, "c", game_data("ABC1", "attack-result", target="b", hit=False))
        assert _recipients(effects) == [("b",)]

    def test_disconnected_target_still_addressed(self):
        room = make_room()
        room.mark_disconnected("g", now=1.0)
        effects = dispatch_game_data(room, "h", game_data("ABC1", "attack", x=1, y=1))
        # dropped later, when the recipient is resolved to a connection
        assert _recipients(effects) == [("g",)]


class TestTurnsAndGameOver:
    def test_advance_turn(self):
        room = make_room()
        room.apply_phase_override(phase=Phase.BATTLE)

        effects = dispatch_game_data(room, "h", game_data("ABC1", "advance-turn"))

        assert room.current_player_id == "g"
        assert _recipients(effects) == [("g",)]

    def test_game_over_records_winner(self):
        room = make_room()
        room.apply_phase_override(phase=Phase.BATTLE)

        effects = dispatch_game_data(room, "g", game_data("ABC1", "game-over", winner="g"))

        assert room.phase == Phase.FINISHED
        assert room.winner == "g"
        assert _recipients(effects) == [("h",)]
