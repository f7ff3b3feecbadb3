"""fal.ai client wrapper for the nano-banana image models."""

import logging
from typing import Any

import fal_client

from ..config import FalConfig

logger = logging.getLogger(__name__)


class FalImageProvider:
    """Thin async wrapper around ``fal_client.AsyncClient.subscribe``.

    ``subscribe`` submits to the fal queue and waits for the result, so one
    call covers queueing, generation and result retrieval.
    """

    def __init__(self, config: FalConfig, api_key: str | None = None):
        self.config = config
        self.api_key = api_key
        self._client: fal_client.AsyncClient | None = None

    @property
    def client(self) -> fal_client.AsyncClient:
        """Get or create the fal client (falls back to FAL_KEY from the env)."""
        if self._client is None:
            self._client = fal_client.AsyncClient(key=self.api_key)
        return self._client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def subscribe(self, application: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Run ``application`` with ``arguments`` and return the raw result."""
        logger.info("Submitting to %s", application)
        kwargs: dict[str, Any] = {
            "arguments": arguments,
            "with_logs": True,
            "on_queue_update": self._log_queue_update,
        }
        if self.config.client_timeout is not None:
            kwargs["client_timeout"] = self.config.client_timeout
        return await self.client.subscribe(application, **kwargs)

    @staticmethod
    def _log_queue_update(update: Any) -> None:
        if isinstance(update, fal_client.InProgress):
            for entry in update.logs or []:
                logger.info("fal: %s", entry.get("message", entry))
