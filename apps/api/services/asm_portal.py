"""Client for the ASM Portal credit authority."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

import httpx

from config import settings

logger = logging.getLogger(__name__)

SPEND_PATH = "/api/credits/spend"
SOURCE_PLATFORM = "storywork"


@dataclass
class RemoteDebited:
    new_balance: int


@dataclass
class RemoteInsufficientFunds:
    error: str


@dataclass
class RemoteUnavailable:
    reason: str


RemoteSpendOutcome = Union[RemoteDebited, RemoteInsufficientFunds, RemoteUnavailable]


class AsmPortalClient:
    """Single-attempt, time-bounded debits against ASM Portal agent balances."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self._client: Optional[httpx.AsyncClient] = None
        if self.base_url:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(timeout_seconds),
                headers={"X-Service-Key": service_key},
                transport=transport,
            )

    @classmethod
    def from_settings(cls) -> "AsmPortalClient":
        return cls(
            base_url=settings.ASM_PORTAL_URL,
            service_key=settings.SERVICE_API_KEY,
            timeout_seconds=settings.ASM_PORTAL_TIMEOUT_SECONDS,
        )

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def spend(
        self,
        *,
        agent_id: str,
        amount: int,
        transaction_type: str,
        description: str,
    ) -> RemoteSpendOutcome:
        if self._client is None:
            return RemoteUnavailable(reason="ASM Portal is not configured")

        payload = {
            "agent_id": agent_id,
            "amount": amount,
            "type": transaction_type,
            "description": description,
            "source_platform": SOURCE_PLATFORM,
        }
        try:
            response = await self._client.post(SPEND_PATH, json=payload)
        except httpx.TimeoutException:
            return RemoteUnavailable(reason="ASM Portal request timed out")
        except httpx.HTTPError as exc:
            return RemoteUnavailable(reason=f"ASM Portal request failed: {exc}")

        if response.status_code >= 400:
            return RemoteUnavailable(reason=f"ASM Portal returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return RemoteUnavailable(reason="ASM Portal returned a non-JSON body")
        if not isinstance(body, dict):
            return RemoteUnavailable(reason="ASM Portal returned an unexpected body")

        if body.get("success"):
            try:
                return RemoteDebited(new_balance=int(body.get("newBalance", 0)))
            except (TypeError, ValueError):
                # The debit happened; only the reported balance is unreadable.
                logger.warning("ASM Portal debited agent %s but returned balance %r", agent_id, body.get("newBalance"))
                return RemoteDebited(new_balance=0)
        return RemoteInsufficientFunds(error=str(body.get("error") or "Insufficient credits"))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
