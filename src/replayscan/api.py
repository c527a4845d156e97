"""Transport-agnostic request boundary.

:func:`handle` takes a raw JSON body and a tenant id, dispatches to the
matching :class:`ReplayScanService` operation and maps failures to
HTTP-style status codes:

* 400 -- malformed body or missing fields
* 404 -- unknown match
* 500 -- failed query job, tag store write or unreadable frame log
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import orjson

from replayscan.exceptions import (
    MatchNotFoundError,
    QueryJobError,
    ReplayScanError,
    RequestValidationError,
)
from replayscan.service.requests import (
    ComboQueryRequest,
    ReplayDataRequest,
    SequenceQueryRequest,
    TagUpdateRequest,
)

if TYPE_CHECKING:
    from replayscan.service.core import ReplayScanService

logger = logging.getLogger(__name__)

_JSON_HEADERS: dict[str, str] = {"Content-Type": "application/json"}


@dataclass(frozen=True, slots=True)
class ApiResponse:
    """A serialized response.

    Attributes:
        status_code: HTTP-style status code.
        body: JSON-encoded body.
        headers: Response headers.
    """

    status_code: int
    body: bytes
    headers: dict[str, str] = field(default_factory=lambda: dict(_JSON_HEADERS))

    def json(self) -> Any:
        return orjson.loads(self.body)


def _respond(status_code: int, payload: Any) -> ApiResponse:
    return ApiResponse(status_code=status_code, body=orjson.dumps(payload))


def _error(status_code: int, message: str) -> ApiResponse:
    return _respond(status_code, {"error": message})


def dispatch(payload: Any, tenant_id: str, service: ReplayScanService) -> Any:
    """Route a decoded request body to the service.

    Bodies carrying ``queryType`` are stub searches; otherwise a body
    with ``bugged`` is a tag update and one with ``matchId`` a
    replay-data fetch.

    Raises:
        RequestValidationError: If the body matches no request shape.
    """
    if not isinstance(payload, dict):
        msg = "Request body must be a JSON object"
        raise RequestValidationError(msg)

    query_type = payload.get("queryType")
    if query_type == "sequence":
        stubs = service.find_sequences(SequenceQueryRequest.parse(payload), tenant_id)
        return [s.to_payload() for s in stubs]
    if query_type == "combo":
        stubs = service.rank_combos(ComboQueryRequest.parse(payload), tenant_id)
        return [s.to_payload() for s in stubs]
    if query_type is not None:
        msg = f"Unknown queryType {query_type!r}"
        raise RequestValidationError(msg)

    if "bugged" in payload:
        stored = service.update_tag(TagUpdateRequest.parse(payload), tenant_id)
        return {"bugged": stored}
    if "matchId" in payload:
        return service.fetch_replay(ReplayDataRequest.parse(payload), tenant_id)

    msg = "Request must carry queryType, bugged or matchId"
    raise RequestValidationError(msg)


def handle(body: bytes | str, tenant_id: str, service: ReplayScanService) -> ApiResponse:
    """Serve one request.

    Args:
        body: Raw JSON request body.
        tenant_id: Authenticated tenant making the request.
        service: Service instance to dispatch to.

    Returns:
        The serialized response; errors never propagate.
    """
    try:
        payload = orjson.loads(body)
    except orjson.JSONDecodeError as exc:
        return _error(400, f"Invalid JSON body: {exc}")

    try:
        result = dispatch(payload, tenant_id, service)
    except RequestValidationError as exc:
        return _error(400, str(exc))
    except MatchNotFoundError as exc:
        return _error(404, str(exc))
    except QueryJobError as exc:
        return _error(500, exc.reason or "Query failed")
    except ReplayScanError as exc:
        logger.error("Request failed for tenant %s: %s", tenant_id, exc)
        return _error(500, str(exc))

    return _respond(200, result)
