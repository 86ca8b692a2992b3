"""SQL storage adapter.

Implements the registry, communication log, LID mapping and membership ports
on top of SQLAlchemy Core, so the same code runs against the production
PostgreSQL registry and an SQLite file for local runs and tests.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional

import sqlalchemy as sa
from sqlalchemy.engine import Engine

from core.models import (
    CommunicationRecord,
    CommunicationStatus,
    JoinRequest,
    MembershipStatus,
    RegistrationFlags,
    RegistryRecord,
)
from core.registry import member_record, membership_status, registration_flags, representative_record

TIMESTAMP = sa.DateTime(timezone=True)
MAX_REQUEST_ATTEMPTS = 3
REQUEST_RETRY_AFTER = timedelta(days=1)

METADATA = sa.MetaData()

# Registry tables are owned by the membership system; we only read them.
registration = sa.Table(
    "registration",
    METADATA,
    sa.Column("registration_id", sa.Integer(), primary_key=True),
    sa.Column("gender", sa.Text(), nullable=True),
    sa.Column("birth_date", sa.Date(), nullable=True),
    sa.Column("transferred", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("has_accepted_terms", sa.Boolean(), nullable=False, server_default=sa.false()),
)

phones = sa.Table(
    "phones",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("registration_id", sa.Integer(), sa.ForeignKey("registration.registration_id"), nullable=False),
    sa.Column("phone_number", sa.Text(), nullable=True),
)

legal_representatives = sa.Table(
    "legal_representatives",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("registration_id", sa.Integer(), sa.ForeignKey("registration.registration_id"), nullable=False),
    sa.Column("phone", sa.Text(), nullable=True),
    sa.Column("alternative_phone", sa.Text(), nullable=True),
)

membership_payments = sa.Table(
    "membership_payments",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("registration_id", sa.Integer(), sa.ForeignKey("registration.registration_id"), nullable=False),
    sa.Column("expiration_date", sa.Date(), nullable=False),
)

group_requests = sa.Table(
    "group_requests",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("registration_id", sa.Integer(), nullable=False),
    sa.Column("group_id", sa.Text(), nullable=False),
    sa.Column("no_of_attempts", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("last_attempt", TIMESTAMP, nullable=True),
    sa.Column("fulfilled", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("updated_at", TIMESTAMP, nullable=True),
)

# Tables below are written by groupwarden.
whatsapp_comms = sa.Table(
    "whatsapp_comms",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("phone_number", sa.Text(), nullable=False),
    sa.Column("reason", sa.Text(), nullable=False),
    sa.Column("timestamp", TIMESTAMP, nullable=False),
    sa.Column("status", sa.Text(), nullable=False, server_default=CommunicationStatus.UNRESOLVED.value),
    sa.UniqueConstraint("phone_number", "reason", name="uq_whatsapp_comms_phone_reason"),
)

member_groups = sa.Table(
    "member_groups",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("registration_id", sa.Integer(), nullable=False),
    sa.Column("phone_number", sa.Text(), nullable=False),
    sa.Column("group_id", sa.Text(), nullable=False),
    sa.Column("status", sa.Text(), nullable=False),
    sa.Column("entry_date", TIMESTAMP, nullable=False),
    sa.Column("exit_date", TIMESTAMP, nullable=True),
    sa.Column("removal_reason", sa.Text(), nullable=True),
)

lid_mappings = sa.Table(
    "lid_mappings",
    METADATA,
    sa.Column("lid", sa.Text(), primary_key=True),
    sa.Column("phone_number", sa.Text(), nullable=False),
    sa.Column("updated_at", TIMESTAMP, nullable=False),
)

ENGINE_TABLES = (whatsapp_comms, member_groups, lid_mappings)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _upsert(engine: Engine, table: sa.Table, values: dict, conflict: list[str], update: dict):
    """Dialect-specific INSERT ... ON CONFLICT DO UPDATE."""

    if engine.dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif engine.dialect.name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upsert not supported for {engine.dialect.name}")
    statement = insert(table).values(**values)
    return statement.on_conflict_do_update(index_elements=conflict, set_=update)


class SQLStorage:
    """Thin SQLAlchemy wrapper that satisfies the storage ports."""

    def __init__(self, engine: Engine, today: Optional[date] = None) -> None:
        self._engine = engine
        self._today = today

    @classmethod
    def from_url(cls, url: str) -> "SQLStorage":
        return cls(sa.create_engine(url, pool_pre_ping=True, future=True))

    def _current_date(self) -> date:
        return self._today or date.today()

    def init_db(self, include_registry: bool = False) -> None:
        """Create the tables groupwarden writes to if they do not exist.

        Registry tables belong to the membership system; they are only
        created on request (local runs and tests).
        """

        tables = list(METADATA.sorted_tables) if include_registry else list(ENGINE_TABLES)
        METADATA.create_all(self._engine, tables=tables)

    # Registry -------------------------------------------------------------

    def fetch_registry_records(self) -> list[RegistryRecord]:
        """Return every (phone, registration) pairing, Active records first.

        Member phones come from ``phones``; legal representatives contribute
        both their main and alternative phones.
        """

        today = self._current_date()
        expirations = (
            sa.select(
                membership_payments.c.registration_id,
                sa.func.max(membership_payments.c.expiration_date).label("max_expiration"),
            )
            .group_by(membership_payments.c.registration_id)
            .subquery()
        )

        with self._engine.connect() as conn:
            registrations = {
                row.registration_id: row
                for row in conn.execute(
                    sa.select(
                        registration.c.registration_id,
                        registration.c.gender,
                        registration.c.birth_date,
                        registration.c.transferred,
                        registration.c.has_accepted_terms,
                        expirations.c.max_expiration,
                    ).select_from(
                        registration.outerjoin(
                            expirations,
                            registration.c.registration_id == expirations.c.registration_id,
                        )
                    )
                )
            }
            member_phones = conn.execute(
                sa.select(phones.c.registration_id, phones.c.phone_number).where(
                    phones.c.phone_number.is_not(None)
                )
            ).all()
            representatives = conn.execute(
                sa.select(
                    legal_representatives.c.registration_id,
                    legal_representatives.c.phone,
                    legal_representatives.c.alternative_phone,
                )
            ).all()

        rep_phones: dict[int, set[str]] = defaultdict(set)
        for rep in representatives:
            for value in (rep.phone, rep.alternative_phone):
                if value:
                    rep_phones[rep.registration_id].add(value)

        records: list[RegistryRecord] = []
        for row in member_phones:
            reg = registrations.get(row.registration_id)
            if reg is None:
                continue
            records.append(
                member_record(
                    phone=row.phone_number,
                    registration_id=row.registration_id,
                    gender=reg.gender,
                    status=membership_status(reg.max_expiration, bool(reg.transferred), today),
                    birth_date=reg.birth_date,
                    has_accepted_terms=bool(reg.has_accepted_terms),
                    representative_phones=rep_phones.get(row.registration_id, ()),
                    today=today,
                )
            )

        for registration_id, values in rep_phones.items():
            reg = registrations.get(registration_id)
            if reg is None:
                continue
            status = membership_status(reg.max_expiration, bool(reg.transferred), today)
            for value in sorted(values):
                records.append(
                    representative_record(
                        phone=value,
                        registration_id=registration_id,
                        status=status,
                        dependent_birth_date=reg.birth_date,
                        today=today,
                    )
                )

        # The matcher takes scalar fields from the first record; prefer Active.
        records.sort(key=lambda record: record.status is not MembershipStatus.ACTIVE)
        return records

    def get_registration_flags(self, registration_ids: Iterable[int]) -> dict[int, RegistrationFlags]:
        ids = list(registration_ids)
        if not ids:
            return {}
        today = self._current_date()
        with self._engine.connect() as conn:
            rows = conn.execute(
                sa.select(
                    registration.c.registration_id,
                    registration.c.birth_date,
                    registration.c.has_accepted_terms,
                ).where(registration.c.registration_id.in_(ids))
            ).all()
        return {
            row.registration_id: registration_flags(
                row.registration_id, row.birth_date, bool(row.has_accepted_terms), today
            )
            for row in rows
        }

    def get_registration_phones(self, registration_id: int) -> list[str]:
        with self._engine.connect() as conn:
            own = conn.execute(
                sa.select(phones.c.phone_number).where(phones.c.registration_id == registration_id)
            ).scalars().all()
            reps = conn.execute(
                sa.select(legal_representatives.c.phone, legal_representatives.c.alternative_phone).where(
                    legal_representatives.c.registration_id == registration_id
                )
            ).all()
        result = [value for value in own if value]
        for rep in reps:
            result.extend(value for value in (rep.phone, rep.alternative_phone) if value)
        return result

    # Communication log ----------------------------------------------------

    def get_latest_unresolved(self, phone: str) -> Optional[CommunicationRecord]:
        """Return the most recent unresolved warning for a phone, any reason."""

        with self._engine.connect() as conn:
            row = conn.execute(
                sa.select(whatsapp_comms.c.reason, whatsapp_comms.c.timestamp, whatsapp_comms.c.status)
                .where(
                    whatsapp_comms.c.phone_number == phone,
                    whatsapp_comms.c.status == CommunicationStatus.UNRESOLVED.value,
                )
                .order_by(whatsapp_comms.c.timestamp.desc())
                .limit(1)
            ).first()
        if row is None:
            return None
        return CommunicationRecord(
            phone=phone,
            reason=row.reason,
            sent_at=row.timestamp,
            status=CommunicationStatus(row.status),
        )

    def upsert_communication(self, phone: str, reason: str, now: datetime) -> None:
        """Create or refresh the unresolved warning for (phone, reason)."""

        unresolved = CommunicationStatus.UNRESOLVED.value
        statement = _upsert(
            self._engine,
            whatsapp_comms,
            {"phone_number": phone, "reason": reason, "timestamp": now, "status": unresolved},
            ["phone_number", "reason"],
            {"timestamp": now, "status": unresolved},
        )
        with self._engine.begin() as conn:
            conn.execute(statement)

    # LID mappings ---------------------------------------------------------

    def save_lid_mapping(self, lid: str, phone: str) -> None:
        now = _utcnow()
        statement = _upsert(
            self._engine,
            lid_mappings,
            {"lid": lid, "phone_number": phone, "updated_at": now},
            ["lid"],
            {"phone_number": phone, "updated_at": now},
        )
        with self._engine.begin() as conn:
            conn.execute(statement)

    def get_lid_mapping(self, lid: str) -> Optional[str]:
        with self._engine.connect() as conn:
            return conn.execute(
                sa.select(lid_mappings.c.phone_number).where(lid_mappings.c.lid == lid)
            ).scalar_one_or_none()

    # Membership -----------------------------------------------------------

    def get_open_members(self, group_id: str) -> list[str]:
        with self._engine.connect() as conn:
            return list(
                conn.execute(
                    sa.select(member_groups.c.phone_number).where(
                        member_groups.c.group_id == group_id,
                        member_groups.c.exit_date.is_(None),
                    )
                ).scalars()
            )

    def record_exit(self, phone: str, group_id: str, reason: str) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                sa.update(member_groups)
                .where(
                    member_groups.c.phone_number == phone,
                    member_groups.c.group_id == group_id,
                    member_groups.c.exit_date.is_(None),
                )
                .values(exit_date=_utcnow(), removal_reason=reason)
            )

    def record_entry(
        self,
        registration_id: int,
        phone: str,
        group_id: str,
        status: MembershipStatus,
    ) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                sa.insert(member_groups).values(
                    registration_id=registration_id,
                    phone_number=phone,
                    group_id=group_id,
                    status=MembershipStatus(status).value,
                    entry_date=_utcnow(),
                )
            )

    def get_pending_requests(self, group_id: str) -> list[JoinRequest]:
        """Unfulfilled requests with attempts left and no attempt in the last day."""

        retry_before = _utcnow() - REQUEST_RETRY_AFTER
        with self._engine.connect() as conn:
            rows = conn.execute(
                sa.select(
                    group_requests.c.id,
                    group_requests.c.registration_id,
                    group_requests.c.group_id,
                    group_requests.c.no_of_attempts,
                    group_requests.c.last_attempt,
                ).where(
                    group_requests.c.group_id == group_id,
                    group_requests.c.no_of_attempts < MAX_REQUEST_ATTEMPTS,
                    group_requests.c.fulfilled == sa.false(),
                    sa.or_(
                        group_requests.c.last_attempt.is_(None),
                        group_requests.c.last_attempt < retry_before,
                    ),
                )
            ).all()
        return [
            JoinRequest(
                request_id=row.id,
                registration_id=row.registration_id,
                group_id=row.group_id,
                attempts=row.no_of_attempts,
                last_attempt=row.last_attempt,
            )
            for row in rows
        ]

    def mark_request_fulfilled(self, request_id: int) -> None:
        now = _utcnow()
        with self._engine.begin() as conn:
            conn.execute(
                sa.update(group_requests)
                .where(group_requests.c.id == request_id)
                .values(fulfilled=True, last_attempt=now, updated_at=now)
            )
