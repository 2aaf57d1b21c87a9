"""
SQLAlchemy-backed account store and partner registry.

Blocking SQLAlchemy work runs in worker threads via asyncio.to_thread.
Increments are single UPDATE statements so concurrent billable actions
from the same account cannot lose updates.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4
import asyncio
import logging

from sqlalchemy import select, insert, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from sharewizard.core.database import (
    get_db_session,
    accounts,
    checkout_sessions,
    partners,
    partner_codes,
)
from sharewizard.core.errors import AccountNotFoundError, StoreError
from sharewizard.models.account import AccountRecord
from sharewizard.models.checkout import CheckoutSessionSnapshot
from sharewizard.models.referral import PartnerCodeRecord, PartnerInfo

logger = logging.getLogger(__name__)

_ACCOUNT_FIELDS = tuple(AccountRecord.model_fields)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on round-trip
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_account(row) -> AccountRecord:
    data = {field: getattr(row, field) for field in _ACCOUNT_FIELDS}
    data["trial_end_date"] = _as_utc(data["trial_end_date"])
    data["reset_date"] = _as_utc(data["reset_date"])
    return AccountRecord(**data)


class SqlAccountStore:
    """Account store over the `accounts` and `checkout_sessions` tables."""

    def __init__(self, poll_interval: float = 0.5):
        self.poll_interval = poll_interval

    async def _run(self, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except SQLAlchemyError as e:
            raise StoreError(f"Account store error: {e}")

    def _get_account(self, account_id: str) -> Optional[AccountRecord]:
        with get_db_session() as session:
            row = session.execute(
                select(accounts).where(accounts.c.account_id == account_id)
            ).first()
            return _row_to_account(row) if row else None

    async def get_account(self, account_id: str) -> Optional[AccountRecord]:
        return await self._run(self._get_account, account_id)

    def _create_account(self, record: AccountRecord) -> AccountRecord:
        try:
            with get_db_session() as session:
                session.execute(insert(accounts).values(**record.model_dump()))
        except IntegrityError:
            # Created concurrently; the stored record wins
            pass
        return self._get_account(record.account_id)

    async def create_account(self, record: AccountRecord) -> AccountRecord:
        return await self._run(self._create_account, record)

    def _update_account(self, account_id: str, changes: Dict[str, Any], expected: Optional[Dict[str, Any]]) -> bool:
        stmt = update(accounts).where(accounts.c.account_id == account_id)
        for field, value in (expected or {}).items():
            stmt = stmt.where(accounts.c[field] == value)
        with get_db_session() as session:
            result = session.execute(
                stmt.values(**changes, updated_at=datetime.now(timezone.utc))
            )
            return result.rowcount > 0

    async def update_account(
        self,
        account_id: str,
        changes: Dict[str, Any],
        *,
        expected: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return await self._run(self._update_account, account_id, changes, expected)

    def _increment_usage(self, account_id: str, amount: int, default_limit: int) -> bool:
        limit = func.coalesce(accounts.c.requests_limit, default_limit)
        with get_db_session() as session:
            result = session.execute(
                update(accounts)
                .where(accounts.c.account_id == account_id)
                .where(accounts.c.requests_used + amount <= limit)
                .values(
                    requests_used=accounts.c.requests_used + amount,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            return result.rowcount > 0

    async def increment_usage(self, account_id: str, amount: int, default_limit: int) -> bool:
        return await self._run(self._increment_usage, account_id, amount, default_limit)

    def _increment_limit(self, account_id: str, amount: int, default_limit: int, plan_type: Optional[str]) -> bool:
        values: Dict[str, Any] = {
            "requests_limit": func.coalesce(accounts.c.requests_limit, default_limit) + amount,
            "updated_at": datetime.now(timezone.utc),
        }
        if plan_type:
            values["plan_type"] = plan_type
        with get_db_session() as session:
            result = session.execute(
                update(accounts).where(accounts.c.account_id == account_id).values(**values)
            )
            return result.rowcount > 0

    async def increment_limit(
        self,
        account_id: str,
        amount: int,
        default_limit: int,
        *,
        plan_type: Optional[str] = None,
    ) -> bool:
        return await self._run(self._increment_limit, account_id, amount, default_limit, plan_type)

    def _add_checkout_session(self, account_id: str, payload: Dict[str, Any]) -> str:
        session_id = uuid4().hex
        try:
            with get_db_session() as session:
                session.execute(
                    insert(checkout_sessions).values(
                        session_id=session_id,
                        account_id=account_id,
                        payload=payload,
                    )
                )
        except IntegrityError:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return session_id

    async def add_checkout_session(self, account_id: str, payload: Dict[str, Any]) -> str:
        return await self._run(self._add_checkout_session, account_id, payload)

    def _get_checkout_session(self, account_id: str, session_id: str) -> Optional[CheckoutSessionSnapshot]:
        with get_db_session() as session:
            row = session.execute(
                select(checkout_sessions.c.url, checkout_sessions.c.error)
                .where(checkout_sessions.c.account_id == account_id)
                .where(checkout_sessions.c.session_id == session_id)
            ).first()
            if not row:
                return None
            return CheckoutSessionSnapshot(session_id=session_id, url=row.url, error=row.error)

    @asynccontextmanager
    async def watch_checkout_session(self, account_id: str, session_id: str):
        """Poll the session row; yields the first snapshot and every change after it."""
        stopped = False

        async def _iterate():
            last = None
            while not stopped:
                snapshot = await self._run(self._get_checkout_session, account_id, session_id)
                if snapshot is None:
                    raise KeyError(f"Checkout session {session_id} not found")
                if snapshot != last:
                    last = snapshot
                    yield snapshot
                await asyncio.sleep(self.poll_interval)

        try:
            yield _iterate()
        finally:
            stopped = True
            logger.debug(f"[store] released checkout watch {session_id}")

    def _resolve_checkout_session(self, account_id: str, session_id: str, url: Optional[str], error: Optional[str]) -> None:
        with get_db_session() as session:
            session.execute(
                update(checkout_sessions)
                .where(checkout_sessions.c.account_id == account_id)
                .where(checkout_sessions.c.session_id == session_id)
                .values(url=url, error=error)
            )

    async def resolve_checkout_session(
        self,
        account_id: str,
        session_id: str,
        *,
        url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        await self._run(self._resolve_checkout_session, account_id, session_id, url, error)


class SqlPartnerRegistry:
    """Partner registry over the `partner_codes` and `partners` tables."""

    def _get_code(self, code: str) -> Optional[PartnerCodeRecord]:
        with get_db_session() as session:
            row = session.execute(
                select(partner_codes).where(partner_codes.c.code == code)
            ).first()
            if not row:
                return None
            return PartnerCodeRecord(
                code=row.code,
                partner_id=row.partner_id,
                active=row.active,
                uses=row.uses,
                max_uses=row.max_uses,
                expires_at=_as_utc(row.expires_at),
            )

    async def get_code(self, code: str) -> Optional[PartnerCodeRecord]:
        return await asyncio.to_thread(self._get_code, code)

    def _get_partner(self, partner_id: str) -> Optional[PartnerInfo]:
        with get_db_session() as session:
            row = session.execute(
                select(partners).where(partners.c.partner_id == partner_id)
            ).first()
            if not row:
                return None
            return PartnerInfo(
                partner_id=row.partner_id,
                display_name=row.display_name,
                email=row.email,
                company_name=row.company_name,
                active=row.active,
                commission_rate=row.commission_rate,
            )

    async def get_partner(self, partner_id: str) -> Optional[PartnerInfo]:
        return await asyncio.to_thread(self._get_partner, partner_id)
