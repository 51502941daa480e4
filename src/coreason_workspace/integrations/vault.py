# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

import os

from loguru import logger


class VaultIntegrator:
    """
    Reads workspace secrets (E2B, storage, worker and AI keys) from the environment.
    """

    PREFIX = "COREASON_WORKSPACE_"

    def get_secret(self, key: str) -> str | None:
        """
        Fetch a secret by its bare name, falling back to the prefixed variable.
        """
        val = os.getenv(key)
        if not val:
            val = os.getenv(f"{self.PREFIX}{key}")

        if not val:
            logger.debug(f"Secret {key} not found in environment.")

        return val
