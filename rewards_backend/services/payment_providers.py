"""Mobile-money disbursement clients (MTN MoMo and Airtel Money)."""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp
from aiohttp import BasicAuth, ClientError, ClientTimeout

from rewards_backend.config import get_settings
from rewards_backend.models.base import PaymentProvider
from rewards_backend.utils import mask_phone_number
from rewards_backend.utils.exceptions import PaymentProviderError, PaymentTimeoutError

logger = logging.getLogger(__name__)

UGANDA_COUNTRY_CODE = "256"


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a disbursement request.

    ``pending`` means the provider accepted the transfer but has not reported
    a final status yet.
    """

    success: bool
    reference: str | None = None
    pending: bool = False
    detail: str | None = None


def _digits(phone_number: str) -> str:
    return "".join(ch for ch in phone_number.strip() if ch.isdigit() or ch == "+")


def format_mtn_msisdn(phone_number: str) -> str:
    """MTN expects the international form without '+', e.g. 256772123456."""
    phone = _digits(phone_number).lstrip("+")
    if phone.startswith("0"):
        phone = f"{UGANDA_COUNTRY_CODE}{phone[1:]}"
    elif not phone.startswith(UGANDA_COUNTRY_CODE):
        phone = f"{UGANDA_COUNTRY_CODE}{phone}"
    return phone


def format_airtel_msisdn(phone_number: str) -> str:
    """Airtel expects the national number without prefix, e.g. 752123456."""
    phone = _digits(phone_number)
    if phone.startswith("0"):
        return phone[1:]
    if phone.startswith(f"+{UGANDA_COUNTRY_CODE}"):
        return phone[len(UGANDA_COUNTRY_CODE) + 1:]
    if phone.startswith(UGANDA_COUNTRY_CODE):
        return phone[len(UGANDA_COUNTRY_CODE):]
    return phone.lstrip("+")


class PaymentProviderClient(ABC):
    """
    Base HTTP client for a disbursement provider.

    Session is created lazily on first use and should be closed on shutdown.
    Subclasses implement ``pay``.
    """

    provider: PaymentProvider

    def __init__(self, base_url: str):
        self.settings = get_settings()
        self.base_url = base_url.rstrip("/")
        self.timeout = ClientTimeout(total=self.settings.payout_timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None
        self._token: str | None = None
        self._token_expires_at: float = 0.0

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        """Ensure session exists and is not closed."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            logger.debug(f"Created new aiohttp session for {self.provider.value} client")

    async def close(self):
        """Close the underlying aiohttp client session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug(f"Closed aiohttp session for {self.provider.value} client")
        self._session = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        expected: tuple[int, ...] = (200,),
        **kwargs: Any,
    ) -> dict:
        """Send a request and return the decoded JSON body (empty dict when there is none).

        Raises:
            PaymentTimeoutError: The provider did not answer within the timeout.
            PaymentProviderError: Transport failure or unexpected status code.
        """
        await self._ensure_session()
        url = f"{self.base_url}{endpoint}"

        try:
            async with self._session.request(method, url, **kwargs) as response:
                if response.status not in expected:
                    error_text = await response.text()
                    logger.error(f"{self.provider.value} API error {response.status} on {endpoint}: {error_text}")
                    raise PaymentProviderError(
                        f"{self.provider.value} API error: {response.status}",
                        status_code=response.status,
                    )
                if response.content_length == 0:
                    return {}
                return await response.json(content_type=None) or {}
        except asyncio.TimeoutError as exc:
            logger.error(f"{self.provider.value} API timeout for {endpoint}")
            raise PaymentTimeoutError(f"{self.provider.value} API timeout for {endpoint}") from exc
        except ClientError as exc:
            logger.error(f"{self.provider.value} API client error for {endpoint}: {exc}")
            raise PaymentProviderError(f"{self.provider.value} API unavailable: {exc}") from exc

    def _cached_token(self) -> str | None:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        return None

    def _store_token(self, data: dict) -> str:
        token = data.get("access_token")
        if not token:
            raise PaymentProviderError(f"{self.provider.value} token response had no access_token")
        expires_in = int(data.get("expires_in") or 0)
        # Refresh a minute early
        self._token = token
        self._token_expires_at = time.monotonic() + max(expires_in - 60, 0)
        return token

    @abstractmethod
    async def pay(self, amount: int, phone_number: str, reference: str) -> PaymentResult:
        """Disburse ``amount`` to ``phone_number``.

        ``reference`` must be stable across retries of the same payout so the
        provider can deduplicate it.
        """


class MTNDisbursementClient(PaymentProviderClient):
    """MTN MoMo disbursement API client."""

    provider = PaymentProvider.MTN

    def __init__(self):
        settings = get_settings()
        super().__init__(settings.mtn_base_url)

    def _subscription_headers(self) -> dict:
        return {
            "Ocp-Apim-Subscription-Key": self.settings.mtn_disbursement_key,
            "X-Target-Environment": self.settings.mtn_target_environment,
        }

    def convert_amount(self, amount: int) -> int:
        """The sandbox only settles EUR; convert UGX amounts there."""
        if self.settings.mtn_currency == "EUR":
            return max(1, round(amount / self.settings.mtn_sandbox_ugx_per_eur))
        return amount

    async def get_token(self) -> str:
        token = self._cached_token()
        if token:
            return token
        data = await self._request(
            "POST",
            "/disbursement/token/",
            auth=BasicAuth(self.settings.mtn_user_id, self.settings.mtn_api_key),
            headers={"Ocp-Apim-Subscription-Key": self.settings.mtn_disbursement_key},
        )
        logger.info("MTN disbursement token acquired")
        return self._store_token(data)

    async def get_transfer_status(self, reference: str) -> dict:
        token = await self.get_token()
        return await self._request(
            "GET",
            f"/disbursement/v1_0/transfer/{reference}",
            headers={"Authorization": f"Bearer {token}", **self._subscription_headers()},
        )

    async def find_transfer(self, reference: str) -> dict | None:
        """Status of an earlier transfer with this reference, or None if MTN has never seen it."""
        try:
            return await self.get_transfer_status(reference)
        except PaymentProviderError as exc:
            if exc.status_code == 404:
                return None
            raise

    @staticmethod
    def _result_from_status(reference: str, data: dict) -> PaymentResult:
        status = data.get("status")
        if status == "SUCCESSFUL":
            return PaymentResult(success=True, reference=data.get("financialTransactionId") or reference)
        if status == "PENDING":
            return PaymentResult(success=False, reference=reference, pending=True, detail=status)
        reason = data.get("reason")
        return PaymentResult(success=False, reference=reference, detail=str(reason or status))

    async def pay(self, amount: int, phone_number: str, reference: str) -> PaymentResult:
        """Disburse once per reference.

        A retry first asks MTN about the reference and reports that transfer
        instead of posting again. Once MTN may hold the transfer, anything
        short of a final status is reported as pending, never as a failure.
        """
        token = await self.get_token()

        try:
            existing = await self.find_transfer(reference)
        except PaymentProviderError as e:
            logger.warning(f"[MTN] Could not look up transfer {reference}, leaving it pending: {e}")
            return PaymentResult(success=False, reference=reference, pending=True, detail="LOOKUP_FAILED")
        if existing is not None:
            logger.info(f"[MTN] Transfer {reference} already exists with status {existing.get('status')}")
            return self._result_from_status(reference, existing)

        msisdn = format_mtn_msisdn(phone_number)
        logger.info(f"[MTN] Disbursing {amount} to {mask_phone_number(msisdn)} ref={reference}")

        try:
            await self._request(
                "POST",
                "/disbursement/v1_0/transfer",
                expected=(200, 202),
                json={
                    "amount": str(self.convert_amount(amount)),
                    "currency": self.settings.mtn_currency,
                    "externalId": reference,
                    "payee": {"partyIdType": "MSISDN", "partyId": msisdn},
                    "payerMessage": "Instant reward payment",
                    "payeeNote": "Your instant reward",
                },
                headers={
                    "Authorization": f"Bearer {token}",
                    "X-Reference-Id": reference,
                    **self._subscription_headers(),
                },
            )
        except PaymentProviderError as e:
            if e.status_code != 409:
                raise
            # Duplicate X-Reference-Id: the transfer was submitted by an earlier call
            logger.info(f"[MTN] Transfer {reference} was already submitted")

        # Transfers are accepted asynchronously; poll once for the final status.
        await asyncio.sleep(self.settings.payout_status_poll_delay_seconds)
        try:
            data = await self.get_transfer_status(reference)
        except PaymentProviderError as e:
            logger.warning(f"[MTN] Status poll for {reference} failed, leaving it pending: {e}")
            return PaymentResult(success=False, reference=reference, pending=True, detail="STATUS_UNKNOWN")

        logger.info(f"[MTN] Transfer {reference} status: {data.get('status')}")
        return self._result_from_status(reference, data)


class AirtelDisbursementClient(PaymentProviderClient):
    """Airtel Money disbursement API client."""

    provider = PaymentProvider.AIRTEL

    SUCCESS_CODES = {"DP00800001001", "SUCCESS", "SUCCESSFUL", "TS"}
    # Ambiguous: the transfer was accepted and may still complete.
    PENDING_CODES = {"DP00800001006", "TIP"}

    def __init__(self):
        settings = get_settings()
        super().__init__(settings.airtel_base_url)

    def _country_headers(self) -> dict:
        return {
            "X-Country": self.settings.airtel_country,
            "X-Currency": self.settings.airtel_currency,
        }

    async def get_token(self) -> str:
        token = self._cached_token()
        if token:
            return token
        data = await self._request(
            "POST",
            "/auth/oauth2/token",
            json={
                "client_id": self.settings.airtel_client_id,
                "client_secret": self.settings.airtel_client_secret,
                "grant_type": "client_credentials",
            },
            headers={"Accept": "*/*"},
        )
        logger.info("Airtel token acquired")
        return self._store_token(data)

    async def pay(self, amount: int, phone_number: str, reference: str) -> PaymentResult:
        token = await self.get_token()
        msisdn = format_airtel_msisdn(phone_number)
        logger.info(f"[AIRTEL] Disbursing {amount} to {mask_phone_number(msisdn)} ref={reference}")

        data = await self._request(
            "POST",
            "/standard/v1/disbursements/",
            json={
                "payee": {"msisdn": msisdn},
                "reference": reference,
                "pin": self.settings.airtel_pin,
                "transaction": {"amount": amount, "id": reference},
            },
            headers={"Authorization": f"Bearer {token}", **self._country_headers()},
        )

        response_code = (data.get("status") or {}).get("response_code")
        transaction = (data.get("data") or {}).get("transaction") or {}
        status = response_code or transaction.get("status")
        logger.info(f"[AIRTEL] Disbursement {reference} status: {status}")

        if status in self.SUCCESS_CODES or transaction.get("status") in self.SUCCESS_CODES:
            return PaymentResult(success=True, reference=transaction.get("reference_id") or reference)
        if status in self.PENDING_CODES:
            return PaymentResult(success=False, reference=reference, pending=True, detail=status)
        return PaymentResult(success=False, reference=reference, detail=str(status))


# Singleton instances
_payment_providers: dict[str, PaymentProviderClient] | None = None


def get_payment_providers() -> dict[str, PaymentProviderClient]:
    """Get singleton provider clients keyed by provider name."""
    global _payment_providers
    if _payment_providers is None:
        _payment_providers = {
            PaymentProvider.MTN.value: MTNDisbursementClient(),
            PaymentProvider.AIRTEL.value: AirtelDisbursementClient(),
        }
    return _payment_providers


async def close_payment_providers() -> None:
    """Close provider HTTP sessions on shutdown."""
    global _payment_providers
    if _payment_providers is None:
        return
    for client in _payment_providers.values():
        await client.close()
    _payment_providers = None
