"""Tests for the JSON request boundary and its status-code mapping."""

from __future__ import annotations

import errno
from typing import TYPE_CHECKING, Any

import orjson
import pytest

from replayscan.api import handle
from replayscan.exceptions import TagStoreError
from replayscan.service.core import ReplayScanService

if TYPE_CHECKING:
    from replayscan.sources.cache import ResultCache
    from replayscan.sources.engine import LocalQueryEngine
    from replayscan.sources.tags import TagKey

LEDGE_DASH_BODY: dict[str, Any] = {
    "queryType": "sequence",
    "actions": [
        {"action": "CLIFF_WAIT", "minFrames": 7},
        {"action": "FALL", "minFrames": 1, "maxFrames": 3},
        {"action": "JUMP", "minFrames": 1, "maxFrames": 5},
        {"action": "AIR_DODGE"},
    ],
}


class ReadOnlyTagStore:
    """Tag store that rejects every write."""

    def get_tag(self, key: TagKey) -> bool | None:
        return None

    def set_tag(self, key: TagKey, value: bool) -> bool:
        msg = "tag table is read-only"
        raise TagStoreError(msg)


def _call(service: ReplayScanService, body: Any, tenant_id: str = "acme") -> Any:
    raw = body if isinstance(body, bytes) else orjson.dumps(body)
    return handle(raw, tenant_id, service)


# ---------------------------------------------------------------------------
# Success paths
# ---------------------------------------------------------------------------


class TestSuccess:
    def test_sequence_query(self, service: ReplayScanService) -> None:
        response = _call(service, LEDGE_DASH_BODY)

        assert response.status_code == 200
        assert response.headers["Content-Type"] == "application/json"
        stubs = response.json()
        assert [(s["frameStart"], s["frameEnd"]) for s in stubs] == [(260, 633)]
        assert stubs[0]["bugged"] is False

    def test_combo_query(self, service: ReplayScanService) -> None:
        response = _call(service, {"queryType": "combo", "comboType": "damage"})
        assert response.status_code == 200
        assert [s["damageDealt"] for s in response.json()] == [45.0]

    def test_replay_fetch(self, service: ReplayScanService) -> None:
        response = _call(service, {"matchId": "m1", "frameStart": 500, "frameEnd": 510})
        assert response.status_code == 200
        body = response.json()
        assert len(body["frames"]) == 11
        assert body["ending"]["placements"] == []

    def test_tag_update_round_trip(self, service: ReplayScanService) -> None:
        response = _call(
            service, {"matchId": "m1", "frameStart": 260, "frameEnd": 633, "bugged": True}
        )
        assert response.status_code == 200
        assert response.json() == {"bugged": True}
        assert _call(service, LEDGE_DASH_BODY).json()[0]["bugged"] is True


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestErrors:
    @pytest.mark.parametrize(
        "body",
        [
            b"{not json",
            [1, 2],
            {"queryType": "heatmap"},
            {"queryType": "combo", "comboType": "speed"},
            {"queryType": "sequence"},
            {"frameStart": 1},
            {"matchId": "m1", "frameStart": 9, "frameEnd": 2},
        ],
    )
    def test_bad_request(self, service: ReplayScanService, body: Any) -> None:
        response = _call(service, body)
        assert response.status_code == 400
        assert response.json()["error"]

    def test_unknown_match(self, service: ReplayScanService) -> None:
        response = _call(service, {"matchId": "m404", "frameStart": 0, "frameEnd": 10})
        assert response.status_code == 404

    def test_query_job_failure(self, service: ReplayScanService) -> None:
        """Tenants without a frame log fail inside the query job."""
        response = _call(service, LEDGE_DASH_BODY, tenant_id="initech")
        assert response.status_code == 500
        assert "initech" in response.json()["error"]

    def test_tag_write_failure(
        self, engine: LocalQueryEngine, result_cache: ResultCache
    ) -> None:
        service = ReplayScanService(
            engine, result_cache, ReadOnlyTagStore(), sleep=lambda _: None
        )
        response = _call(
            service, {"matchId": "m1", "frameStart": 260, "frameEnd": 633, "bugged": True}
        )
        assert response.status_code == 500
        assert response.json() == {"error": "tag table is read-only"}

    def test_cache_write_failure_is_not_an_error(
        self, service: ReplayScanService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Searches still answer 200 when the cache cannot be written."""

        def no_space(*args: object, **kwargs: object) -> tuple[int, str]:
            raise OSError(errno.ENOSPC, "No space left on device")

        monkeypatch.setattr("replayscan.sources.cache.tempfile.mkstemp", no_space)
        response = _call(service, LEDGE_DASH_BODY)

        assert response.status_code == 200
        assert [(s["frameStart"], s["frameEnd"]) for s in response.json()] == [(260, 633)]
