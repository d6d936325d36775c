"""Primary delivery backend: a OneSignal-style push notification REST API."""

import logging
from typing import Any, Dict, Optional

import aiohttp

from studynudge.config import Config
from studynudge.db.models import DeliveryReceipt, NotificationPayload
from studynudge.utils.constants import PUSH_TTL_SECONDS
from studynudge.utils.errors import BackendUnavailable

logger = logging.getLogger(__name__)


class PushApiBackend:
    """
    Thin async client for the push notification service.

    - send() delivers immediately
    - schedule_at() asks the service to deliver later (`send_after`)
    - cancel() withdraws a scheduled delivery

    Network failures and non-2xx answers surface as BackendUnavailable so the
    dispatch chain can move on to the next backend.
    """

    name = "push_api"

    def __init__(
        self,
        api_url: str | None = None,
        app_id: str | None = None,
        api_key: str | None = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.api_url = (api_url or Config.PUSH_API_URL).rstrip("/")
        self.app_id = app_id or Config.PUSH_APP_ID
        self.api_key = api_key or Config.PUSH_API_KEY
        self.timeout_seconds = timeout_seconds or Config.BACKEND_TIMEOUT

        self._external_session = session is not None
        self._session = session

    # ------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._external_session and not self._session.closed:
            await self._session.close()

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self.api_key}",
        }

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    async def send(self, user_id: str, payload: NotificationPayload) -> DeliveryReceipt:
        return await self._post(self.build_body(user_id, payload))

    async def schedule_at(
        self, user_id: str, payload: NotificationPayload, iso_timestamp: str
    ) -> DeliveryReceipt:
        body = self.build_body(user_id, payload)
        body["send_after"] = iso_timestamp
        return await self._post(body)

    async def cancel(self, delivery_id: str) -> bool:
        url = f"{self.api_url}/notifications/{delivery_id}"
        try:
            async with self.session.delete(
                url, params={"app_id": self.app_id}, headers=self._headers()
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    logger.warning(f"Push API cancel {delivery_id} failed {resp.status}: {text}")
                    return False
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise BackendUnavailable(self.name, f"cancel failed: {e}") from e

        return bool(data.get("success", True))

    # ------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------

    def build_body(self, user_id: str, payload: NotificationPayload) -> Dict[str, Any]:
        """Build the REST request body for one user."""
        return {
            "app_id": self.app_id,
            "include_external_user_ids": [user_id],
            "contents": {"en": payload.body},
            "headings": {"en": payload.title},
            "data": payload.data,
            "url": payload.data.get("url"),
            "priority": payload.priority,
            "ttl": PUSH_TTL_SECONDS,
        }

    async def _post(self, body: Dict[str, Any]) -> DeliveryReceipt:
        if not self.app_id or not self.api_key:
            raise BackendUnavailable(self.name, "push API is not configured")

        try:
            async with self.session.post(
                f"{self.api_url}/notifications", json=body, headers=self._headers()
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise BackendUnavailable(self.name, f"HTTP {resp.status}: {text}")
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise BackendUnavailable(self.name, str(e)) from e

        return self.parse_response(data)

    @staticmethod
    def parse_response(data: Dict[str, Any]) -> DeliveryReceipt:
        """Interpret the service's JSON answer.

        Expected shape: {"id": "...", "recipients": 1}. An answer without an
        id, or with errors, is not an acknowledgement.
        """
        delivery_id = data.get("id")
        errors = data.get("errors")

        if not delivery_id or errors:
            return DeliveryReceipt(success=False, error=str(errors or "no delivery id"))

        return DeliveryReceipt(success=True, delivery_id=str(delivery_id))
