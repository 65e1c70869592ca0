"""Club snapshot persistence: keyed store plus a session-scoped cache.

The engine keeps each club's billing and ledger data as two JSON documents.
``SqlSnapshotStore`` reads and replaces those documents; ``SnapshotRepository``
adds a read-through cache, write-through saves and per-club locks so every
mutator can run a full read-modify-write without interleaving with another
call for the same club.
"""

import asyncio
import logging
from typing import Any, Callable, TypeVar

from pydantic import BaseModel as PydanticModel
from pydantic import ValidationError as SchemaError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.club_snapshot import ClubSnapshot, SnapshotKind
from src.models.dues import DuesSnapshot
from src.models.ledger import LedgerSnapshot
from src.services.errors import PersistenceError, ValidationError
from src.services.localizer import t

logger = logging.getLogger(__name__)

SnapshotT = TypeVar("SnapshotT", bound=PydanticModel)

_SCHEMAS: dict[SnapshotKind, type[PydanticModel]] = {
    SnapshotKind.DUES: DuesSnapshot,
    SnapshotKind.LEDGER: LedgerSnapshot,
}


def normalize_club_code(club_code: str) -> str:
    """Normalize a club code for storage keys.

    Raises:
        ValidationError: If the code is empty
    """
    code = (club_code or "").strip().upper()
    if not code:
        raise ValidationError(t("errors.empty_club_code"))
    return code


class SqlSnapshotStore:
    """Snapshot documents stored in the club_snapshots table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize with an async session factory."""
        self.session_factory = session_factory

    async def load(self, club_code: str, kind: SnapshotKind) -> dict[str, Any] | None:
        """Return the stored document, or None if the club has none yet."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ClubSnapshot.payload).where(
                    ClubSnapshot.club_code == club_code,
                    ClubSnapshot.kind == kind.value,
                )
            )
            return result.scalar_one_or_none()

    async def save(self, club_code: str, kind: SnapshotKind, payload: dict[str, Any]) -> None:
        """Replace the stored document in a single commit."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ClubSnapshot).where(
                    ClubSnapshot.club_code == club_code,
                    ClubSnapshot.kind == kind.value,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                session.add(ClubSnapshot(club_code=club_code, kind=kind.value, payload=payload))
            else:
                row.payload = payload
            await session.commit()


class SnapshotRepository:
    """Read-through cache over a snapshot store.

    Cached snapshots are never handed out directly: every read returns a deep
    copy, and a successful save replaces the cached copy. A failed save drops
    the cached entry so the next read goes back to the store.
    """

    def __init__(self, store: SqlSnapshotStore):
        """Initialize with the backing store."""
        self.store = store
        self._cache: dict[tuple[str, SnapshotKind], PydanticModel] = {}
        self._locks: dict[tuple[str, SnapshotKind], asyncio.Lock] = {}

    def lock(self, club_code: str, kind: SnapshotKind) -> asyncio.Lock:
        """Lock serializing read-modify-write cycles on one club aggregate."""
        key = (club_code, kind)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def invalidate(self, club_code: str | None = None) -> None:
        """Drop cached snapshots for one club, or for every club."""
        if club_code is None:
            self._cache.clear()
            return
        for key in [key for key in self._cache if key[0] == club_code]:
            del self._cache[key]

    async def get_dues(self, club_code: str) -> DuesSnapshot:
        """Load the club's dues snapshot (empty if none stored)."""
        return await self._get(club_code, SnapshotKind.DUES, DuesSnapshot)

    async def save_dues(self, club_code: str, dues: DuesSnapshot) -> bool:
        """Persist the club's dues snapshot. Returns False on store failure."""
        return await self._save(club_code, SnapshotKind.DUES, dues)

    async def get_ledger(self, club_code: str) -> LedgerSnapshot:
        """Load the club's ledger snapshot (empty if none stored)."""
        return await self._get(club_code, SnapshotKind.LEDGER, LedgerSnapshot)

    async def save_ledger(self, club_code: str, ledger: LedgerSnapshot) -> bool:
        """Persist the club's ledger snapshot. Returns False on store failure."""
        return await self._save(club_code, SnapshotKind.LEDGER, ledger)

    async def mutate(
        self,
        club_code: str,
        kind: SnapshotKind,
        mutation: Callable[[Any], bool],
    ) -> Any | None:
        """Run one locked read-modify-write cycle on a club aggregate.

        The mutation receives a private copy of the snapshot. It returns False
        when its target does not exist (nothing is written) and raises
        ValidationError to reject the change (nothing is written either).

        Returns:
            Copy of the saved snapshot, or None if the target was not found or
            the store failed
        """
        schema = _SCHEMAS[kind]
        async with self.lock(club_code, kind):
            try:
                snapshot = await self._get(club_code, kind, schema)
            except PersistenceError:
                return None
            if mutation(snapshot) is False:
                return None
            if not await self._save(club_code, kind, snapshot):
                return None
            return snapshot.model_copy(deep=True)

    async def _get(self, club_code: str, kind: SnapshotKind, schema: type[SnapshotT]) -> SnapshotT:
        key = (club_code, kind)
        cached = self._cache.get(key)
        if cached is None:
            try:
                payload = await self.store.load(club_code, kind)
            except SQLAlchemyError as e:
                logger.error("Failed to load %s snapshot for club %s: %s", kind.value, club_code, e)
                raise PersistenceError(t("errors.save_failed")) from e
            try:
                cached = schema.model_validate(payload or {})
            except SchemaError as e:
                logger.error("Stored %s snapshot for club %s is invalid: %s", kind.value, club_code, e)
                raise PersistenceError(t("errors.save_failed")) from e
            self._cache[key] = cached
        return cached.model_copy(deep=True)

    async def _save(self, club_code: str, kind: SnapshotKind, snapshot: PydanticModel) -> bool:
        key = (club_code, kind)
        payload = snapshot.model_dump(mode="json", by_alias=True)
        try:
            await self.store.save(club_code, kind, payload)
        except SQLAlchemyError as e:
            logger.error("Failed to save %s snapshot for club %s: %s", kind.value, club_code, e)
            self._cache.pop(key, None)
            return False
        self._cache[key] = snapshot.model_copy(deep=True)
        return True


__all__ = ["SqlSnapshotStore", "SnapshotRepository", "normalize_club_code"]
