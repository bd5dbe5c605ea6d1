"""
HTTP client for the smart machine controller.

Issues the physical "start cycle" command for a machine.
"""

from __future__ import annotations

from typing import Optional

import httpx

from machine_control.core.exceptions import DeviceCommandError, DeviceTimeoutError
from machine_control.configs import DeviceControllerSettings
from machine_control.loggers import logger


class SmartMachineClient:
    """
    Device controller speaking HTTP to the machine gateway.

    Attributes:
        base_url: Gateway base URL.
    """

    START_PATH = "/machines/{machine_id}/start"

    def __init__(
        self,
        settings: DeviceControllerSettings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            settings: Controller connection settings.
            client: Shared HTTP client. One is created when omitted.
        """
        self.base_url = settings.base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=settings.start_timeout)

    async def start_cycle(self, machine_id: str) -> None:
        """
        Start the physical cycle of a machine.

        Raises:
            DeviceTimeoutError: If the gateway did not answer in time.
            DeviceCommandError: On a transport error or a non-2xx answer.
        """
        url = self.base_url + self.START_PATH.format(machine_id=machine_id)
        try:
            response = await self._client.post(url)
        except httpx.TimeoutException as e:
            raise DeviceTimeoutError(
                f"Start command timed out: {e}", machine_id=machine_id
            ) from e
        except httpx.HTTPError as e:
            raise DeviceCommandError(
                f"Start command failed: {e}", machine_id=machine_id
            ) from e

        if response.is_error:
            raise DeviceCommandError(
                f"Controller rejected start command with HTTP {response.status_code}",
                machine_id=machine_id,
                details={"http_status": response.status_code},
            )

        logger.debug(f"Start command accepted for machine {machine_id}")

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
