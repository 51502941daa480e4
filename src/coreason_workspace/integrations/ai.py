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
from loguru import logger

from coreason_workspace.exceptions import AuthorizationError, RateLimited, UpstreamFailure
from coreason_workspace.integrations.identity import IdentityClient
from coreason_workspace.models.results import GenerateCodeResult


class AIWorker:
    """Client for the AI code-generation worker, with a per-user generation allowance."""

    def __init__(
        self,
        url: str | None,
        api_key: str | None,
        identity: IdentityClient,
        max_generations: int = 1000,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url.rstrip("/") if url else None
        self.api_key = api_key
        self.identity = identity
        self.max_generations = max_generations
        self._internal_client = client is None
        self._client = client or httpx.AsyncClient(timeout=60.0)

    async def generate_code(
        self, user_id: str, file_name: str, code: str, line: int, instructions: str
    ) -> GenerateCodeResult:
        """Ask the AI worker to rewrite ``code`` around ``line`` following ``instructions``.

        Raises:
            RateLimited: If the user has used up their generations.
            AuthorizationError: If the user is unknown.
            UpstreamFailure: If the worker fails.
        """
        if not self.url:
            return GenerateCodeResult(response="AI code generation is not configured.", success=False)

        user = await self.identity.get_user(user_id)
        if user is None:
            raise AuthorizationError("Unknown user.")
        if user.generations >= self.max_generations:
            raise RateLimited("You have reached your AI generation limit.")

        logger.info(f"Generating code for {file_name}", user_id=user_id, line=line)
        try:
            response = await self._client.post(
                f"{self.url}/api",
                json={"fileName": file_name, "code": code, "line": line, "instructions": instructions},
                headers={"Authorization": self.api_key} if self.api_key else {},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"AI worker request failed: {e}")
            raise UpstreamFailure(f"Code generation failed: {e}") from e

        await self.identity.increment_generations(user_id)
        return GenerateCodeResult(response=str(payload.get("response", "")), success=True)

    async def aclose(self) -> None:
        if self._internal_client:
            await self._client.aclose()
