"""Tests for replay stub payloads."""

from __future__ import annotations

import orjson

from replayscan.service.stubs import ReplayStub


def _stub(**kwargs: object) -> ReplayStub:
    base: dict[str, object] = {
        "match_id": "m1",
        "stage_id": 2,
        "frame_start": 940,
        "frame_end": 1107,
        "original_sequence_start": 1000,
        "original_sequence_end": 1077,
        "entity_id": 0,
        "players": [
            {"characterId": 2, "tag": "FOX", "playerIndex": 0},
            {"characterId": 20, "tag": "FALCO", "playerIndex": 1},
        ],
    }
    base.update(kwargs)
    return ReplayStub(**base)  # type: ignore[arg-type]


class TestReplayStub:
    def test_sequence_payload_has_no_combo_fields(self) -> None:
        payload = _stub().to_payload()
        assert payload["originalSequenceStart"] == 1000
        assert payload["bugged"] is False
        assert "numMoves" not in payload
        assert "damageDealt" not in payload

    def test_combo_payload(self) -> None:
        stub = _stub(num_moves=5, start_pct=10.0, end_pct=55.0)
        payload = stub.to_payload()
        assert stub.is_combo
        assert (payload["numMoves"], payload["damageDealt"]) == (5, 45.0)

    def test_payload_survives_json(self) -> None:
        stub = _stub(num_moves=3, start_pct=10.0, end_pct=45.0, bugged=True)
        decoded = orjson.loads(orjson.dumps(stub.to_payload()))
        assert ReplayStub.from_payload(decoded) == stub

    def test_payload_players_are_copies(self) -> None:
        stub = _stub()
        stub.to_payload()["players"][0]["tag"] = "MARTH"
        assert stub.players[0]["tag"] == "FOX"
