"""Reuse the Azure CLI sign-in.

azpim does not authenticate on its own. It borrows an ARM access token and
the signed-in user's identity from an existing ``az login`` session.
"""

import asyncio
import json
import shutil
from dataclasses import dataclass
from typing import Any

from azpim.config import settings
from azpim.errors import ConfigError
from azpim.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class AzureCliSession:
    """Token and identity read from the Azure CLI."""

    access_token: str
    user_id: str
    user_principal_name: str
    display_name: str | None = None


async def _run_az(*args: str) -> Any:
    """Run an az command and parse its JSON output."""
    az = shutil.which("az")
    if az is None:
        raise ConfigError(
            "Azure CLI not found. Install it and sign in with 'az login' to use this tool."
        )

    logger.debug("Running Azure CLI", args=list(args))
    proc = await asyncio.create_subprocess_exec(
        az,
        *args,
        "--output",
        "json",
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        detail = stderr.decode(errors="replace").strip() or f"exit code {proc.returncode}"
        raise ConfigError(f"Azure CLI command failed (az {args[0]} {args[1]}): {detail}")

    try:
        return json.loads(stdout)
    except json.JSONDecodeError as e:
        raise ConfigError("Azure CLI returned invalid JSON") from e


async def load_session() -> AzureCliSession:
    """Read an ARM token and the signed-in user from the Azure CLI."""
    resource = settings.arm_base_url.rstrip("/") + "/"
    token = await _run_az("account", "get-access-token", "--resource", resource)
    user = await _run_az("ad", "signed-in-user", "show")

    session = AzureCliSession(
        access_token=token["accessToken"],
        user_id=user["id"],
        user_principal_name=user.get("userPrincipalName", ""),
        display_name=user.get("displayName"),
    )
    logger.info(
        "Signed-in user resolved",
        user_id=session.user_id,
        user_principal_name=session.user_principal_name,
    )
    return session
