"""Durable uniqueness store over the ``codes`` table.

This is the final authority on whether a code has been handed out. A hit here
is permanent and never expires.
"""

from dataclasses import dataclass
from typing import Protocol

from prometheus_client import Counter
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shortcodes.enums import IssueOutcome, StoreName
from shortcodes.errors import StoreUnavailableError
from shortcodes.models import IssuedCode

__all__ = ["IssueResult", "IssuedCodeStore", "DurableCodeStore"]

DATABASE_READS_TOTAL = Counter(
    "shortcodes_database_reads_total",
    "Total durable store read operations",
)
DATABASE_WRITES_TOTAL = Counter(
    "shortcodes_database_writes_total",
    "Total durable store write operations",
    ["outcome"],
)


@dataclass(frozen=True)
class IssueResult:
    outcome: IssueOutcome
    record: IssuedCode | None = None


class IssuedCodeStore(Protocol):
    async def exists(self, code: str) -> bool: ...

    async def issue(self, code: str, owner_id: str) -> IssueResult: ...


class DurableCodeStore:
    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def exists(self, code: str) -> bool:
        try:
            result = await self._db.execute(select(IssuedCode.id).where(IssuedCode.code == code))
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(StoreName.DURABLE, f"lookup failed for {code}: {exc}") from exc
        DATABASE_READS_TOTAL.inc()
        return result.scalar_one_or_none() is not None

    async def issue(self, code: str, owner_id: str) -> IssueResult:
        """Insert ``code`` for ``owner_id``.

        A unique-constraint violation means someone else already holds the code
        and is reported as a conflict. Anything else the database raises is
        treated as the store being unavailable.
        """
        record = IssuedCode(code=code, owner_id=owner_id)
        try:
            self._db.add(record)
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            DATABASE_WRITES_TOTAL.labels(outcome=IssueOutcome.CONFLICT).inc()
            return IssueResult(IssueOutcome.CONFLICT)
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise StoreUnavailableError(StoreName.DURABLE, f"issue failed for {code}: {exc}") from exc

        await self._db.refresh(record)
        DATABASE_WRITES_TOTAL.labels(outcome=IssueOutcome.ISSUED).inc()
        return IssueResult(IssueOutcome.ISSUED, record)
