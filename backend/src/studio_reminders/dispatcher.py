from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping

from .addresses import AddressPolicy, mask_address, normalize_address
from .ledger import DeliveryKey, DeliveryLedger
from .sms_gateway import SmsSender, SmsSendRequest
from .templates import render

logger = logging.getLogger(__name__)

CLAIMED_ELSEWHERE = "claimed by another process"
PREVIOUSLY_FAILED = "Previously failed"
ALREADY_SENT = "Already sent"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PreparedMessage:
    key: DeliveryKey
    body: str


@dataclass(frozen=True)
class DispatchOutcome:
    success: bool
    already_sent: bool
    detail: str | None = None
    provider_ref: str | None = None
    delivery_id: str | None = None


def prepare_message(
    channel_address: str | None,
    template_id: str,
    logical_slot: datetime,
    variables: Mapping[str, object],
    policy: AddressPolicy | None = None,
) -> PreparedMessage:
    """Normalize the address and render the body without touching any store.

    Raises ``InvalidAddressError`` when the address cannot be normalized.
    """
    address = normalize_address(channel_address, policy)
    return PreparedMessage(
        key=DeliveryKey(channel_address=address, template_id=template_id, logical_slot=logical_slot),
        body=render(template_id, variables),
    )


class DeliveryDispatcher:
    def __init__(
        self,
        *,
        ledger: DeliveryLedger,
        sender: SmsSender,
        address_policy: AddressPolicy | None = None,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self._ledger = ledger
        self._sender = sender
        self._address_policy = address_policy or AddressPolicy()
        self._clock = clock

    def dispatch(
        self,
        channel_address: str | None,
        template_id: str,
        logical_slot: datetime,
        variables: Mapping[str, object],
        *,
        source_ref: str | None = None,
    ) -> DispatchOutcome:
        """Send one message at most once per (address, template, logical slot).

        The ledger row is claimed before the transport is called, so a crash
        after the claim leaves the slot ``queued`` and suppressed rather than
        re-sent.
        """
        prepared = prepare_message(channel_address, template_id, logical_slot, variables, self._address_policy)
        masked = mask_address(prepared.key.channel_address)

        existing = self._ledger.find(prepared.key)
        if existing is not None:
            return _outcome_for_existing(existing.status, existing.delivery_id, existing.provider_ref)

        claimed = self._ledger.claim(prepared.key, body=prepared.body, source_ref=source_ref)
        if claimed is None:
            logger.info("Slot for %s %s already claimed", masked, template_id)
            return DispatchOutcome(success=False, already_sent=True, detail=CLAIMED_ELSEWHERE)

        try:
            result = self._sender.send(SmsSendRequest(to=prepared.key.channel_address, message=prepared.body))
        except Exception as exc:
            logger.exception("SMS adapter raised for %s %s", masked, template_id)
            detail = f"adapter_error: {exc}"
            self._ledger.mark_failed(claimed.delivery_id, failure_detail=detail)
            return DispatchOutcome(
                success=False,
                already_sent=False,
                detail=detail,
                delivery_id=claimed.delivery_id,
            )

        if result.status == "sent":
            self._ledger.mark_sent(
                claimed.delivery_id,
                provider_ref=result.provider_message_id,
                sent_at=self._clock(),
            )
            logger.info("Sent %s to %s (%s)", template_id, masked, claimed.delivery_id)
            return DispatchOutcome(
                success=True,
                already_sent=False,
                provider_ref=result.provider_message_id,
                delivery_id=claimed.delivery_id,
            )

        detail = result.failure_detail
        self._ledger.mark_failed(claimed.delivery_id, failure_detail=detail)
        logger.warning("Failed to send %s to %s: %s", template_id, masked, detail)
        return DispatchOutcome(
            success=False,
            already_sent=False,
            detail=detail,
            delivery_id=claimed.delivery_id,
        )


def _outcome_for_existing(status: str, delivery_id: str, provider_ref: str | None) -> DispatchOutcome:
    if status == "sent":
        return DispatchOutcome(
            success=True,
            already_sent=True,
            detail=ALREADY_SENT,
            provider_ref=provider_ref,
            delivery_id=delivery_id,
        )
    if status == "failed":
        return DispatchOutcome(success=False, already_sent=True, detail=PREVIOUSLY_FAILED, delivery_id=delivery_id)
    return DispatchOutcome(success=False, already_sent=True, detail=CLAIMED_ELSEWHERE, delivery_id=delivery_id)
