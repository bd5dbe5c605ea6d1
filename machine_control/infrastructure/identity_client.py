"""
HTTP client for the identity provider.
"""

from __future__ import annotations

from typing import Optional

import httpx

from machine_control.configs import IdentitySettings
from machine_control.loggers import logger


class IdentityProviderClient:
    """Validates request tokens against the identity provider."""

    VALIDATE_PATH = "/tokens/validate"

    def __init__(
        self,
        settings: IdentitySettings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = settings.base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=settings.timeout)

    async def validate_token(self, token: str) -> bool:
        """
        Check whether a token is valid.

        Any failure to get a positive answer counts as an invalid token.
        """
        if not token:
            return False

        try:
            response = await self._client.post(
                self.base_url + self.VALIDATE_PATH,
                json={"token": token},
            )
        except httpx.HTTPError as e:
            logger.error(f"Identity provider unreachable: {e}")
            return False

        if response.is_error:
            return False

        try:
            return response.json().get("valid") is True
        except ValueError:
            logger.warning("Identity provider returned a non-JSON body")
            return False

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
