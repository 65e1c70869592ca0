"""Match parsed deposit notifications against open payment records.

Policy: scan the club's billing periods in stored order and take the first
record of the depositor that is Unpaid or PendingConfirmation.

- amount equal to the record amount: confirm it (success)
- amount differs and the record is Unpaid: mark it PendingConfirmation for
  manual review (no success)
- amount differs and the record is already pending: leave it (no success)

Matching never raises. Lookup or store failures produce a "no match" log.
"""

import asyncio
import inspect
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional, Union

from src.models.dues import PaymentStatus, utc_now
from src.services.config import DEFAULT_PACKAGES
from src.services.errors import DuesError
from src.services.notification_parser import NotificationParser, ParsedDeposit
from src.services.payment_status import Actor, PaymentStatusMachine
from src.services.snapshot_repository import SnapshotRepository, normalize_club_code

logger = logging.getLogger(__name__)

OPEN_STATUSES = (PaymentStatus.UNPAID, PaymentStatus.PENDING_CONFIRMATION)


@dataclass
class NotificationMatchLog:
    """Observable outcome of one matched notification."""

    timestamp: datetime
    raw_text: str
    parsed_name: str
    parsed_amount: int
    matched_player: Optional[str] = None
    matched_period: Optional[str] = None
    success: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass(frozen=True)
class NotificationEvent:
    """Notification posted by an app on the device."""

    package: str
    text: str = ""
    big_text: str = ""

    @property
    def body(self) -> str:
        return self.text or self.big_text


MatchCallback = Callable[[NotificationMatchLog], Union[None, Awaitable[None]]]


class NotificationMatcher:
    """Applies deposit notifications to dues through the status machine."""

    def __init__(
        self,
        repository: SnapshotRepository,
        status_machine: PaymentStatusMachine,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize matcher.

        Args:
            repository: Snapshot repository holding the dues aggregate
            status_machine: Status machine performing the transitions
            clock: Source of the log timestamps
        """
        self.repository = repository
        self.status_machine = status_machine
        self.clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, club_code: str) -> asyncio.Lock:
        """Lock serializing notification handling for one club."""
        if club_code not in self._locks:
            self._locks[club_code] = asyncio.Lock()
        return self._locks[club_code]

    async def match(
        self, club_code: str, parsed: ParsedDeposit, raw_text: Optional[str] = None
    ) -> NotificationMatchLog:
        """Match one parsed deposit.

        A second call for the same club waits until the previous status change
        and ledger resync have been persisted.
        """
        log = NotificationMatchLog(
            timestamp=self.clock(),
            raw_text=raw_text or f"{parsed.name} {parsed.amount}",
            parsed_name=parsed.name,
            parsed_amount=parsed.amount,
        )
        try:
            code = normalize_club_code(club_code)
            async with self.lock(code):
                await self._apply(code, parsed, log)
        except DuesError as e:
            logger.warning("Notification match failed for %s: %s", parsed.name, e)
            log.matched_player = None
            log.matched_period = None
            log.success = False
        return log

    async def _apply(self, club_code: str, parsed: ParsedDeposit, log: NotificationMatchLog) -> None:
        dues = await self.repository.get_dues(club_code)

        for period in dues.billing_periods:
            record = next(
                (
                    r
                    for r in dues.payments.get(period.id, [])
                    if r.player_name == parsed.name and r.status in OPEN_STATUSES
                ),
                None,
            )
            if record is None:
                continue

            if record.amount == parsed.amount:
                updated = await self.status_machine.transition(
                    club_code, period.id, parsed.name, PaymentStatus.CONFIRMED, Actor.AUTO_MATCH
                )
                if updated is None:
                    logger.error(
                        "Auto-confirmation not persisted: club=%s period=%s player=%s",
                        club_code,
                        period.id,
                        parsed.name,
                    )
                    return
                log.matched_player = parsed.name
                log.matched_period = period.name
                log.success = True
                logger.info(
                    "Deposit auto-confirmed: club=%s period=%s player=%s amount=%d",
                    club_code,
                    period.id,
                    parsed.name,
                    parsed.amount,
                )
                return

            logger.warning(
                "Deposit amount mismatch, manual admin review: club=%s period=%s player=%s expected=%s got=%d",
                club_code,
                period.id,
                parsed.name,
                record.amount,
                parsed.amount,
            )
            if record.status == PaymentStatus.UNPAID:
                updated = await self.status_machine.transition(
                    club_code,
                    period.id,
                    parsed.name,
                    PaymentStatus.PENDING_CONFIRMATION,
                    Actor.AUTO_MATCH,
                )
                if updated is None:
                    return
            log.matched_player = parsed.name
            log.matched_period = period.name
            return

        logger.info("No open payment record for depositor %s in club %s", parsed.name, club_code)


class NotificationListener:
    """Consumes a notification stream for one club, one event at a time."""

    def __init__(
        self,
        club_code: str,
        matcher: NotificationMatcher,
        parser: Optional[NotificationParser] = None,
        allowed_packages: Iterable[str] = DEFAULT_PACKAGES,
        on_match: Optional[MatchCallback] = None,
    ):
        self.club_code = club_code
        self.matcher = matcher
        self.parser = parser or NotificationParser()
        self.allowed_packages = set(allowed_packages)
        self.on_match = on_match
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    async def handle(self, event: NotificationEvent) -> Optional[NotificationMatchLog]:
        """Parse and match one event; None when it is ignored."""
        if self.allowed_packages and event.package not in self.allowed_packages:
            logger.debug("Ignoring notification from %s", event.package)
            return None

        parsed = self.parser.parse(event.body)
        if parsed is None:
            return None

        log = await self.matcher.match(self.club_code, parsed, raw_text=event.body)
        if self.on_match is not None:
            # The match is already stored; a failing callback must not end the stream
            try:
                result = self.on_match(log)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Match callback failed for club %s: %s", self.club_code, e, exc_info=True)
        return log

    async def listen(self, events: AsyncIterator[NotificationEvent]) -> None:
        """Process events until the stream ends or stop() is called."""
        self._stopped = False
        logger.info("Notification listener started for club %s", self.club_code)
        try:
            async for event in events:
                if self._stopped:
                    break
                await self.handle(event)
        finally:
            logger.info("Notification listener stopped for club %s", self.club_code)

    def start(self, events: AsyncIterator[NotificationEvent]) -> asyncio.Task:
        """Run listen() in a background task, replacing a running subscription."""
        self.stop()
        self._task = asyncio.create_task(self.listen(events))
        return self._task

    def stop(self) -> None:
        """End the subscription and cancel its background task."""
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None


__all__ = [
    "MatchCallback",
    "NotificationEvent",
    "NotificationListener",
    "NotificationMatchLog",
    "NotificationMatcher",
]
