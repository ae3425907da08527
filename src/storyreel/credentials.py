"""Credential selection collaborators."""

import logging
import os
from typing import Protocol

from dotenv import load_dotenv
from rich.console import Console

logger = logging.getLogger(__name__)

API_KEY_ENV = "GEMINI_API_KEY"


class CredentialProvider(Protocol):
    """Source of the API credential used for generation."""

    async def has_selected_credential(self) -> bool: ...

    async def open_credential_selector(self) -> None: ...


async def check_credential(provider: CredentialProvider) -> bool:
    """Ask the provider for a credential; a failing check counts as none."""
    try:
        return bool(await provider.has_selected_credential())
    except Exception:  # noqa: BLE001
        logger.warning(
            "Credential check failed, assuming no key selected.",
            exc_info=True,
        )
        return False


class EnvCredentialProvider:
    """Credential taken from an explicit key or the environment."""

    def __init__(
        self,
        api_key: str | None = None,
        console: Console | None = None,
    ) -> None:
        self._explicit_key = api_key
        self.console = console or Console()

    @property
    def api_key(self) -> str | None:
        """The key in use, re-read from `.env` and the environment."""
        if self._explicit_key:
            return self._explicit_key
        load_dotenv()
        return os.getenv(API_KEY_ENV) or None

    async def has_selected_credential(self) -> bool:
        return bool(self.api_key)

    async def open_credential_selector(self) -> None:
        self.console.print(
            f"[bold yellow]An API key is required.[/bold yellow] "
            f"Set {API_KEY_ENV} in your environment or .env file, "
            "or pass --api-key. Use a billing-enabled key with Veo access.",
        )
