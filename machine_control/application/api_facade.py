"""
API Facade - Authenticated entry point for machine operations.

Validates the request token and routes method/path requests to the
reservation service. Authentication failures become UNAUTHORIZED responses
here; every other outcome is already classified by the service.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Final, Optional

from machine_control.application.reservation_service import ReservationService
from machine_control.core.exceptions import UnauthorizedError
from machine_control.core.interfaces import Authenticator
from machine_control.core.value_objects import MachineRecord, MachineResponse
from machine_control.loggers import logger


# =============================================================================
# Routes
# =============================================================================

REQUEST_MACHINE_PATH: Final[str] = "/machine/request"
MACHINE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^/machine/([a-zA-Z0-9-]+)$")
START_PATTERN: Final[re.Pattern[str]] = re.compile(r"^/machine/([a-zA-Z0-9-]+)/start$")
RELEASE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^/machine/([a-zA-Z0-9-]+)/release$")


@dataclass(frozen=True)
class ApiRequest:
    """
    Parsed request at the service boundary.

    Attributes:
        method: HTTP-style method (GET, POST).
        path: Request path.
        token: Bearer token to validate.
        body: Request body fields.
    """

    method: str
    path: str
    token: str = ""
    body: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Facade
# =============================================================================


class MachineApiFacade:
    """
    Facade for the machine control API.

    Each public operation authenticates and then delegates to the
    reservation service.
    """

    def __init__(
        self,
        service: ReservationService,
        authenticator: Authenticator,
    ) -> None:
        """
        Initialize the facade.

        Args:
            service: Reservation service executing the operations.
            authenticator: Validator for request tokens.
        """
        self._service = service
        self._authenticator = authenticator

    async def _check_token(self, token: str) -> None:
        """
        Validate a request token.

        Raises:
            UnauthorizedError: If the token is rejected.
        """
        if not await self._authenticator.validate_token(token):
            raise UnauthorizedError("Invalid token")

    # =========================================================================
    # Routing
    # =========================================================================

    async def handle(self, request: ApiRequest) -> MachineResponse:
        """
        Authenticate and route a request.

        Args:
            request: Parsed boundary request.

        Returns:
            The operation's response; UNAUTHORIZED for a bad token,
            INTERNAL_ERROR for an unknown route.
        """
        try:
            await self._check_token(request.token)
        except UnauthorizedError as e:
            logger.warning(f"Rejected {request.method} {request.path}: {e.message}")
            return MachineResponse.unauthorized(e.message)

        method = request.method.upper()

        if method == "POST" and request.path == REQUEST_MACHINE_PATH:
            location_id = request.body.get("location_id")
            job_id = request.body.get("job_id")
            if not location_id or not job_id:
                return MachineResponse.bad_request(
                    message="location_id and job_id are required"
                )
            return await self._service.reserve(location_id, job_id)

        match = MACHINE_PATTERN.match(request.path)
        if method == "GET" and match:
            return await self._service.get_state(match.group(1))

        match = START_PATTERN.match(request.path)
        if method == "POST" and match:
            return await self._service.start_cycle(match.group(1))

        match = RELEASE_PATTERN.match(request.path)
        if method == "POST" and match:
            return await self._service.release(match.group(1), request.body.get("job_id"))

        logger.warning(f"No route for {request.method} {request.path}")
        return MachineResponse.internal_error(f"No route for {request.method} {request.path}")

    # =========================================================================
    # Machine Operations
    # =========================================================================

    async def request_machine(self, token: str, location_id: str, job_id: str) -> dict[str, Any]:
        """Reserve a machine at a location for a job."""
        response = await self.handle(
            ApiRequest(
                "POST",
                REQUEST_MACHINE_PATH,
                token,
                {"location_id": location_id, "job_id": job_id},
            )
        )
        return response.to_dict()

    async def get_machine(self, token: str, machine_id: str) -> dict[str, Any]:
        """Get the state of a machine."""
        response = await self.handle(ApiRequest("GET", f"/machine/{machine_id}", token))
        return response.to_dict()

    async def start_machine(self, token: str, machine_id: str) -> dict[str, Any]:
        """Start the cycle of a reserved machine."""
        response = await self.handle(ApiRequest("POST", f"/machine/{machine_id}/start", token))
        return response.to_dict()

    async def release_machine(
        self,
        token: str,
        machine_id: str,
        job_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Release a reserved machine."""
        body = {"job_id": job_id} if job_id else {}
        response = await self.handle(
            ApiRequest("POST", f"/machine/{machine_id}/release", token, body)
        )
        return response.to_dict()

    async def release_expired(self, token: str, location_id: str) -> dict[str, Any]:
        """Release expired holds at a location."""
        try:
            await self._check_token(token)
        except UnauthorizedError as e:
            return MachineResponse.unauthorized(e.message).to_dict()

        released: list[MachineRecord] = await self._service.release_expired(location_id)
        return {
            "success": True,
            "message": f"Released {len(released)} expired hold(s)",
            "data": [record.to_dict() for record in released],
        }
