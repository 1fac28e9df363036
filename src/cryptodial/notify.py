"""SMS notifications -- Africa's Talking via httpx.

The wallet-creation disclosure is the only message the flows depend on;
every other notification is best-effort.
"""

from __future__ import annotations

import abc
import logging

import httpx

from cryptodial.config import SmsConfig, is_unresolved
from cryptodial.errors import NotificationError

logger = logging.getLogger("cryptodial.notify")

# Africa's Talking per-recipient codes meaning "accepted".
_AT_SUCCESS_CODES = {100, 101, 102}


class Notifier(abc.ABC):
    """Sends a short text message to a phone number."""

    @abc.abstractmethod
    async def send_sms(self, phone_number: str, message: str) -> None:
        """Deliver *message* or raise :class:`NotificationError`."""

    async def aclose(self) -> None:
        """Release network resources."""


class LoggingNotifier(Notifier):
    """Used when SMS is disabled. Logs the recipient only, never the body."""

    async def send_sms(self, phone_number: str, message: str) -> None:
        logger.info(f"SMS disabled; dropping {len(message)}-char message to {phone_number}")


class AfricasTalkingNotifier(Notifier):
    """Sends SMS through the Africa's Talking messaging API."""

    def __init__(self, config: SmsConfig, client: httpx.AsyncClient | None = None) -> None:
        if is_unresolved(config.username) or is_unresolved(config.api_key):
            raise ValueError(
                "SMS not configured. Set sms.username and sms.api_key "
                "(or AT_USERNAME / AT_API_KEY) in the environment."
            )
        self.config = config
        self.client = client or httpx.AsyncClient(timeout=config.timeout)

    async def send_sms(self, phone_number: str, message: str) -> None:
        payload = {
            "username": self.config.username,
            "to": phone_number,
            "message": message,
        }
        if self.config.sender_id:
            payload["from"] = self.config.sender_id

        try:
            resp = await self.client.post(
                self.config.base_url,
                headers={
                    "apiKey": self.config.api_key,
                    "Accept": "application/json",
                },
                data=payload,
            )
        except httpx.HTTPError as exc:
            raise NotificationError(f"SMS request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise NotificationError(f"Africa's Talking API error ({resp.status_code}): {resp.text}")

        try:
            recipients = resp.json()["SMSMessageData"]["Recipients"]
        except (ValueError, KeyError, TypeError) as exc:
            raise NotificationError(f"Unexpected SMS API response: {resp.text}") from exc
        if not recipients:
            raise NotificationError("SMS rejected: no recipients accepted")
        for recipient in recipients:
            if recipient.get("statusCode") not in _AT_SUCCESS_CODES:
                raise NotificationError(f"SMS rejected for {phone_number}: {recipient.get('status')}")
        logger.info(f"SMS sent to {phone_number}")

    async def aclose(self) -> None:
        await self.client.aclose()


def build_notifier(config: SmsConfig) -> Notifier:
    if not config.enabled:
        return LoggingNotifier()
    return AfricasTalkingNotifier(config)


# ---------------------------------------------------------------------------
# One-time private key disclosure
# ---------------------------------------------------------------------------
#
# The service keeps custody of every key, but the product hands the freshly
# generated key to the user once, in clear text, over SMS. This is the only
# place a plaintext key leaves the process. Any change to that trade-off
# belongs here.


async def send_key_disclosure(
    notifier: Notifier,
    phone_number: str,
    wallet_id: str,
    private_key: str,
    service_name: str = "Cryptodial",
) -> None:
    """Send the wallet id and plaintext key. Failures propagate."""
    message = (
        f"{service_name} Wallet\n"
        f"ID: {wallet_id}\n"
        f"Key: {private_key}\n\n"
        f"Keep this information secure!"
    )
    await notifier.send_sms(phone_number, message)
    logger.info(f"Key disclosure sent for {wallet_id}")


async def send_transfer_confirmation(
    notifier: Notifier,
    phone_number: str,
    amount: str,
    symbol: str,
    recipient_wallet_id: str,
    link: str,
    service_name: str = "Cryptodial",
) -> bool:
    """Best-effort confirmation SMS. Returns False (and logs) on failure."""
    message = f"{service_name}: sent {amount} {symbol} to {recipient_wallet_id}.\n{link}"
    try:
        await notifier.send_sms(phone_number, message)
    except NotificationError as exc:
        logger.warning(f"Transfer confirmation SMS to {phone_number} failed: {exc}")
        return False
    return True
