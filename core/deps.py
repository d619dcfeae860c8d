import hashlib
import logging
from dataclasses import dataclass
from typing import Callable, Dict

import jwt
from fastapi import Depends, HTTPException, Request, status

from services.positioning import PushPositionSource
from services.punch_service import PunchService, TimeClockService
from services.timeclock_client import TimeClockClient

logger = logging.getLogger(__name__)

# Standard credentials exception
CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Missing or invalid Authorization header",
    headers={"WWW-Authenticate": "Bearer"},
)


# Everything Held for One Signed-In Employee
@dataclass
class EmployeeContext:
    employee_id: str
    client: TimeClockService
    positions: PushPositionSource
    controller: PunchService
    token: str


# Claims the time-tracking service puts the user id in
IDENTITY_CLAIMS = ("user_id", "sub")


def employee_key(token: str) -> str:
    """Stable local identifier for an opaque token; the token itself is never persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:32]


def employee_identity(token: str) -> str:
    """
    Who the token belongs to, stable across token renewals.

    The signature is not checked here; the time-tracking service verifies
    the token on every call. Opaque or claim-less tokens fall back to
    employee_key.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return employee_key(token)

    for claim in IDENTITY_CLAIMS:
        value = claims.get(claim)
        if isinstance(value, (str, int)) and value != "":
            return str(value)
    return employee_key(token)


class ControllerRegistry:
    """One controller per employee, shared across requests and token renewals."""

    def __init__(self, client_factory: Callable[[str], TimeClockService] = TimeClockClient):
        self.client_factory = client_factory
        self._contexts: Dict[str, EmployeeContext] = {}

    def get(self, token: str) -> EmployeeContext:
        key = employee_identity(token)
        context = self._contexts.get(key)
        if context is not None and context.token != token:
            # Same employee, renewed token: keep the controller and its session
            set_token = getattr(context.client, "set_access_token", None)
            if set_token is not None:
                set_token(token)
            context.token = token
            logger.info(f"[TIMECLOCK] Access token renewed for employee {key[:8]}")
        if context is None:
            client = self.client_factory(token)
            positions = PushPositionSource()
            context = EmployeeContext(
                employee_id=key,
                client=client,
                positions=positions,
                controller=PunchService(client, positions),
                token=token,
            )
            self._contexts[key] = context
            logger.info(f"[TIMECLOCK] Started controller for employee {key[:8]}")
        return context

    async def close(self) -> None:
        for context in self._contexts.values():
            await context.controller.close()
            aclose = getattr(context.client, "aclose", None)
            if aclose is not None:
                await aclose()
        self._contexts.clear()


# Extract the Bearer Token From the Authorization Header
async def get_access_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")

    # Make Sure Formatting Valid
    if not auth_header.startswith("Bearer "):
        raise CREDENTIALS_EXCEPTION

    token = auth_header.split(" ", 1)[1].strip()
    if not token:
        raise CREDENTIALS_EXCEPTION
    return token


def get_registry(request: Request) -> ControllerRegistry:
    return request.app.state.registry


# Resolve the Caller's Controller (Created on First Use)
async def get_employee(
    request: Request, token: str = Depends(get_access_token)
) -> EmployeeContext:
    return get_registry(request).get(token)
