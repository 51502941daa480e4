# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

import httpx
import pydantic
from loguru import logger

from coreason_workspace.exceptions import UpstreamFailure
from coreason_workspace.models.users import User


class IdentityClient:
    """Client for the user/database worker that knows who owns which sandbox."""

    def __init__(self, base_url: str, api_key: str | None = None, client: httpx.AsyncClient | None = None):
        """Initializes the IdentityClient.

        Args:
            base_url: Root URL of the database worker.
            api_key: Value sent in the Authorization header.
            client: Optional httpx.AsyncClient for connection pooling.
        """
        self.base_url = base_url.rstrip("/")
        self._headers = {"Authorization": api_key} if api_key else {}
        self._internal_client = client is None
        self._client = client or httpx.AsyncClient(timeout=10.0)

    async def get_user(self, user_id: str) -> User | None:
        """Fetch a user record.

        Returns:
            User | None: The user, or None if the worker has no record.

        Raises:
            UpstreamFailure: If the worker cannot be reached or answers with an error.
        """
        try:
            response = await self._client.get(
                f"{self.base_url}/api/user", params={"id": user_id}, headers=self._headers
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"User lookup failed for {user_id}: {e}")
            raise UpstreamFailure(f"User lookup failed: {e}") from e

        if not data:
            return None
        try:
            return User.model_validate(data)
        except pydantic.ValidationError as e:
            logger.error(f"Malformed user record for {user_id}: {e}")
            raise UpstreamFailure(f"Malformed user record: {e}") from e

    async def increment_generations(self, user_id: str) -> None:
        try:
            response = await self._client.post(
                f"{self.base_url}/api/user/increment-generations",
                json={"userId": user_id},
                headers=self._headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to record AI generation for {user_id}: {e}")
            raise UpstreamFailure(f"Failed to record generation: {e}") from e

    async def aclose(self) -> None:
        if self._internal_client:
            await self._client.aclose()
