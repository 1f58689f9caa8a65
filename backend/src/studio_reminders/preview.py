from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from .addresses import AddressPolicy, InvalidAddressError
from .appointments import AppointmentStore
from .candidates import ReminderCandidate, ReminderCategory, collect_candidates
from .civil_time import CivilZone
from .dispatcher import prepare_message
from .jobs import JOB_CATEGORIES
from .ledger import DeliveryLedgerReader
from .templates import render

_SKIP_REASONS = {
    "sent": "Already sent",
    "failed": "Previously failed",
    "queued": "Claimed by another process",
}
INVALID_ADDRESS_REASON = "Invalid phone number"


@dataclass(frozen=True)
class PreviewItem:
    address: str
    template_id: str
    client_name: str
    event_date: str
    event_time: str
    service: str
    deposit_amount: float | None
    body: str
    would_send: bool
    reason: str | None = None


@dataclass(frozen=True)
class PreviewReport:
    as_of: datetime
    categories: dict[str, list[PreviewItem]] = field(default_factory=dict)
    clients_total: int = 0

    @property
    def would_send_count(self) -> int:
        return sum(1 for items in self.categories.values() for item in items if item.would_send)


class PreviewService:
    """Dry run of every reminder job: same windows, read-only ledger lookups, no sends."""

    def __init__(
        self,
        *,
        store: AppointmentStore,
        ledger: DeliveryLedgerReader,
        zone: CivilZone,
        studio_name: str,
        address_policy: AddressPolicy | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._zone = zone
        self._studio_name = studio_name
        self._address_policy = address_policy or AddressPolicy()

    def preview(self, as_of: datetime | date | None = None) -> PreviewReport:
        now = self._zone.from_civil(as_of) if as_of is not None else self._zone.from_civil(self._zone.now())
        categories: dict[str, list[PreviewItem]] = {}
        for job_categories in JOB_CATEGORIES.values():
            for category in job_categories:
                categories[category] = self._preview_category(category, now)
        return PreviewReport(as_of=now, categories=categories, clients_total=self._store.count_clients())

    def _preview_category(self, category: ReminderCategory, now: datetime) -> list[PreviewItem]:
        candidates = collect_candidates(
            category,
            now=now,
            zone=self._zone,
            store=self._store,
            studio_name=self._studio_name,
        )
        return [self._preview_item(candidate) for candidate in candidates]

    def _preview_item(self, candidate: ReminderCandidate) -> PreviewItem:
        appointment = candidate.appointment
        try:
            prepared = prepare_message(
                appointment.phone,
                candidate.template_id,
                candidate.logical_slot,
                candidate.variables,
                self._address_policy,
            )
        except InvalidAddressError:
            address = appointment.phone or ""
            body = render(candidate.template_id, candidate.variables)
            would_send = False
            reason: str | None = INVALID_ADDRESS_REASON
        else:
            address = prepared.key.channel_address
            body = prepared.body
            existing = self._ledger.find(prepared.key)
            would_send = existing is None
            reason = _SKIP_REASONS.get(existing.status) if existing is not None else None

        return PreviewItem(
            address=address,
            template_id=candidate.template_id,
            client_name=appointment.client_name,
            event_date=self._zone.format_date(appointment.starts_at),
            event_time=self._zone.format_time(appointment.starts_at),
            service=appointment.service,
            deposit_amount=appointment.deposit_amount,
            body=body,
            would_send=would_send,
            reason=reason,
        )
