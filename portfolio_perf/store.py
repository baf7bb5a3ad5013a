from __future__ import annotations

import datetime as dt
import logging

from sqlalchemy.orm import Session

from portfolio_perf.db.models import ConsolidatedPeriodRow, DailyPerformanceRow
from portfolio_perf.exceptions import InvariantViolation
from portfolio_perf.models import SCHEMA_VERSION, ConsolidatedPeriodRecord, DailyPerformanceRecord
from portfolio_perf.schema import (
    daily_from_dict,
    daily_to_dict,
    document_version,
    migrate_daily,
    migrate_period,
    period_from_dict,
    period_to_dict,
)

logger = logging.getLogger(__name__)

OVERALL_ACCOUNT = "overall"


class PerformanceStore:
    """
    Daily records keyed by (owner, account, date) and period records keyed by
    (owner, account, period type, period key). Writes flush; callers commit.
    """

    def __init__(self, session: Session):
        self.session = session

    def commit(self) -> None:
        self.session.commit()

    # ------------------------------------------------------------ daily

    def _daily_row(self, owner_id: str, account_id: str, day: dt.date) -> DailyPerformanceRow | None:
        return (
            self.session.query(DailyPerformanceRow)
            .filter(
                DailyPerformanceRow.owner_id == owner_id,
                DailyPerformanceRow.account_id == account_id,
                DailyPerformanceRow.date == day,
            )
            .one_or_none()
        )

    def put_daily(
        self,
        owner_id: str,
        account_id: str,
        record: DailyPerformanceRecord,
        *,
        as_of: dt.date | None = None,
    ) -> None:
        """
        Upsert a daily record. With `as_of`, a record for a day before `as_of` is
        closed: rewriting it with different content is refused.
        """
        payload = daily_to_dict(record)
        row = self._daily_row(owner_id, account_id, record.date)
        if row is None:
            self.session.add(
                DailyPerformanceRow(
                    owner_id=owner_id,
                    account_id=account_id,
                    date=record.date,
                    schema_version=SCHEMA_VERSION,
                    payload_json=payload,
                )
            )
            self.session.flush()
            logger.debug("Stored daily record %s/%s %s", owner_id, account_id, record.date.isoformat())
            return
        if row.payload_json == payload:
            return
        if as_of is not None and record.date < as_of:
            raise InvariantViolation(
                f"Daily record {account_id} {record.date.isoformat()} is closed and cannot be rewritten"
            )
        row.schema_version = SCHEMA_VERSION
        row.payload_json = payload
        self.session.flush()
        logger.debug("Replaced daily record %s/%s %s", owner_id, account_id, record.date.isoformat())

    def get_daily(self, owner_id: str, account_id: str, day: dt.date) -> DailyPerformanceRecord | None:
        row = self._daily_row(owner_id, account_id, day)
        return daily_from_dict(row.payload_json) if row is not None else None

    def latest_daily_before(self, owner_id: str, account_id: str, day: dt.date) -> DailyPerformanceRecord | None:
        row = (
            self.session.query(DailyPerformanceRow)
            .filter(
                DailyPerformanceRow.owner_id == owner_id,
                DailyPerformanceRow.account_id == account_id,
                DailyPerformanceRow.date < day,
            )
            .order_by(DailyPerformanceRow.date.desc())
            .first()
        )
        return daily_from_dict(row.payload_json) if row is not None else None

    def daily_between(
        self, owner_id: str, account_id: str, start: dt.date, end: dt.date
    ) -> list[DailyPerformanceRecord]:
        rows = (
            self.session.query(DailyPerformanceRow)
            .filter(
                DailyPerformanceRow.owner_id == owner_id,
                DailyPerformanceRow.account_id == account_id,
                DailyPerformanceRow.date >= start,
                DailyPerformanceRow.date <= end,
            )
            .order_by(DailyPerformanceRow.date.asc())
            .all()
        )
        return [daily_from_dict(r.payload_json) for r in rows]

    def daily_dates(self, owner_id: str, account_id: str) -> list[dt.date]:
        rows = (
            self.session.query(DailyPerformanceRow.date)
            .filter(DailyPerformanceRow.owner_id == owner_id, DailyPerformanceRow.account_id == account_id)
            .order_by(DailyPerformanceRow.date.asc())
            .all()
        )
        return [r[0] for r in rows]

    # ------------------------------------------------------------ periods

    def _period_row(
        self, owner_id: str, account_id: str, period_type: str, period_key: str
    ) -> ConsolidatedPeriodRow | None:
        return (
            self.session.query(ConsolidatedPeriodRow)
            .filter(
                ConsolidatedPeriodRow.owner_id == owner_id,
                ConsolidatedPeriodRow.account_id == account_id,
                ConsolidatedPeriodRow.period_type == period_type,
                ConsolidatedPeriodRow.period_key == period_key,
            )
            .one_or_none()
        )

    def put_period(self, owner_id: str, account_id: str, record: ConsolidatedPeriodRecord) -> bool:
        """Upsert a period record. Returns True when stored content changed."""
        payload = period_to_dict(record)
        row = self._period_row(owner_id, account_id, record.period_type, record.period_key)
        if row is None:
            self.session.add(
                ConsolidatedPeriodRow(
                    owner_id=owner_id,
                    account_id=account_id,
                    period_type=record.period_type,
                    period_key=record.period_key,
                    schema_version=int(record.schema_version),
                    payload_json=payload,
                )
            )
        elif row.payload_json == payload:
            return False
        else:
            row.schema_version = int(record.schema_version)
            row.payload_json = payload
        self.session.flush()
        logger.info("Stored %s %s for %s/%s", record.period_type, record.period_key, owner_id, account_id)
        return True

    def get_period(
        self, owner_id: str, account_id: str, period_type: str, period_key: str
    ) -> ConsolidatedPeriodRecord | None:
        row = self._period_row(owner_id, account_id, period_type, period_key)
        return period_from_dict(row.payload_json) if row is not None else None

    def get_periods(
        self,
        owner_id: str,
        account_id: str,
        period_type: str,
        *,
        start_key: str | None = None,
        end_key: str | None = None,
    ) -> list[ConsolidatedPeriodRecord]:
        q = self.session.query(ConsolidatedPeriodRow).filter(
            ConsolidatedPeriodRow.owner_id == owner_id,
            ConsolidatedPeriodRow.account_id == account_id,
            ConsolidatedPeriodRow.period_type == period_type,
        )
        # Keys are zero-padded, so string order is chronological.
        if start_key is not None:
            q = q.filter(ConsolidatedPeriodRow.period_key >= start_key)
        if end_key is not None:
            q = q.filter(ConsolidatedPeriodRow.period_key <= end_key)
        rows = q.order_by(ConsolidatedPeriodRow.period_key.asc()).all()
        return [period_from_dict(r.payload_json) for r in rows]

    # ------------------------------------------------------------ maintenance

    def migrate_all(self, owner_id: str | None = None) -> int:
        """Rewrite stored payloads that predate the current schema. Returns rows touched."""
        touched = 0
        for model, migrate in ((DailyPerformanceRow, migrate_daily), (ConsolidatedPeriodRow, migrate_period)):
            q = self.session.query(model)
            if owner_id is not None:
                q = q.filter(model.owner_id == owner_id)
            for row in q.all():
                if document_version(row.payload_json) >= SCHEMA_VERSION:
                    continue
                row.payload_json = migrate(row.payload_json)
                row.schema_version = SCHEMA_VERSION
                touched += 1
        self.session.flush()
        if touched:
            logger.info("Migrated %d stored documents to schema v%d", touched, SCHEMA_VERSION)
        return touched
