from __future__ import annotations

from typing import List, Optional, Tuple

from fastapi import HTTPException


# ──────────────────────────────────────────────────────────────
# Domain errors
# ──────────────────────────────────────────────────────────────

class TripCoreError(Exception):
    code = "tripcore_error"


class ValidationFailed(TripCoreError):
    """Rejected before any network call."""

    code = "validation_failed"


class EndpointsExhausted(TripCoreError):
    """Every mirror endpoint failed. ``last_error`` is the final underlying cause."""

    code = "endpoints_exhausted"

    def __init__(self, attempts: List[Tuple[str, BaseException]]):
        self.attempts = attempts
        self.last_error: Optional[BaseException] = attempts[-1][1] if attempts else None
        tried = ", ".join(url for url, _ in attempts) or "no endpoints configured"
        super().__init__(f"all spatial query endpoints failed ({tried}): {self.last_error!r}")


class MalformedResponse(TripCoreError):
    code = "malformed_response"


class RoutingUnavailable(TripCoreError):
    code = "routing_unavailable"


# ──────────────────────────────────────────────────────────────
# HTTP helpers
# ──────────────────────────────────────────────────────────────

def bad_request(code: str, message: str):
    raise HTTPException(status_code=400, detail={"code": code, "message": message})


def bad_gateway(code: str, message: str):
    raise HTTPException(status_code=502, detail={"code": code, "message": message})


def service_unavailable(code: str, message: str):
    raise HTTPException(status_code=503, detail={"code": code, "message": message})
