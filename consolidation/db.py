"""
Consolidation Store

Persists the records owned by the consolidation core, scoped by business line:
- consolidated_document: one row per (company, identifier, revision)
- consolidated_invoice_link: active membership, at most one per invoice
- consolidation_attempt: one row per (company, year, month)
- consolidation_settings: auto-consolidation toggle per company
- consolidation_claim: identifier being submitted right now, one per company

Links exist only while their document is pending or valid. Releasing members
(cancel, invalid) deletes the links but keeps the document and its member list.

A claim is taken before the tax authority is called, so hosts sharing the
database (API, Temporal workers) never submit the same period twice. Claims
older than CLAIM_TIMEOUT are treated as abandoned.
"""

import json
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from core.errors import (
    DuplicateConsolidationError,
    IneligibleSelectionError,
    SubmissionInProgressError,
)
from core.models import (
    AttemptStatus,
    AutoConsolidationAttempt,
    ConsolidatedDocument,
    DocumentStatus,
    Period,
    to_business_time,
)

DB_PATH = Path(__file__).parent.parent / "consolidation.db"

CLAIM_TIMEOUT = timedelta(minutes=15)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@contextmanager
def immediate_transaction(conn: sqlite3.Connection):
    """Write transaction holding the database write lock from its first read."""
    conn.isolation_level = None
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


# =============================================================================
# Store Interface
# =============================================================================

class ConsolidationStore(ABC):
    """Persistence contract used by the lifecycle, scheduler and service."""

    @abstractmethod
    def latest_document(self, company_id: str, document_id: str) -> Optional[ConsolidatedDocument]:
        """Most recent revision of a document, or None."""

    @abstractmethod
    def list_documents(self, company_id: str, year: Optional[int] = None) -> List[ConsolidatedDocument]:
        """Every revision, ordered by period then revision."""

    @abstractmethod
    def active_memberships(
        self,
        company_id: str,
        invoice_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, DocumentStatus]:
        """invoice id -> status of the document currently holding it."""

    @abstractmethod
    def create_document(self, document: ConsolidatedDocument) -> ConsolidatedDocument:
        """Insert a new revision and link its members atomically."""

    @abstractmethod
    def update_document(self, document: ConsolidatedDocument) -> ConsolidatedDocument:
        """Persist lifecycle fields of the latest revision, releasing links if inactive."""

    @abstractmethod
    def claim_submission(self, company_id: str, document_id: str, owner: str, now: datetime) -> None:
        """
        Reserve an identifier for one submission.

        Raises:
            DuplicateConsolidationError: Latest revision is pending or valid
            SubmissionInProgressError: Another owner holds a live claim
        """

    @abstractmethod
    def release_submission(self, company_id: str, document_id: str, owner: str) -> None:
        """Drop a claim held by ``owner`` (no-op if it is gone)."""

    @abstractmethod
    def get_attempt(self, company_id: str, period: Period) -> Optional[AutoConsolidationAttempt]:
        """The attempt for a period, or None."""

    @abstractmethod
    def save_attempt(self, attempt: AutoConsolidationAttempt) -> AutoConsolidationAttempt:
        """Insert or replace the attempt for its period."""

    @abstractmethod
    def list_attempts(
        self,
        company_id: str,
        statuses: Optional[Iterable[AttemptStatus]] = None,
    ) -> List[AutoConsolidationAttempt]:
        """Attempts, optionally filtered by status, ordered by period."""

    @abstractmethod
    def get_auto_consolidation_enabled(self, company_id: str) -> Optional[bool]:
        """Persisted toggle, or None if never set."""

    @abstractmethod
    def set_auto_consolidation_enabled(self, company_id: str, enabled: bool) -> None:
        """Persist the toggle."""


# =============================================================================
# SQLite Implementation
# =============================================================================

class SQLiteConsolidationStore(ConsolidationStore):
    """
    sqlite3-backed store.

    Usage:
        store = SQLiteConsolidationStore("consolidation.db")
        store.init_db()
    """

    def __init__(self, db_path: Union[str, Path] = DB_PATH):
        self.db_path = Path(db_path)

    def get_db_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory"""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables and indexes if they do not exist."""
        conn = self.get_db_connection()
        try:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS consolidated_document (
                    company_id TEXT NOT NULL,
                    document_id TEXT NOT NULL,
                    revision INTEGER NOT NULL,
                    year INTEGER NOT NULL,
                    month INTEGER NOT NULL,
                    member_ids TEXT NOT NULL,
                    total_excluding_tax TEXT NOT NULL,
                    tax_amount TEXT NOT NULL,
                    rounding TEXT NOT NULL,
                    total_payable TEXT NOT NULL,
                    status TEXT NOT NULL,
                    submission_uid TEXT,
                    uuid TEXT,
                    long_id TEXT,
                    validated_at TEXT,
                    cancellation_reason TEXT,
                    cancelled_at TEXT,
                    last_error TEXT,
                    rejected_documents TEXT,
                    created_at TEXT,
                    updated_at TEXT,

                    PRIMARY KEY (company_id, document_id, revision)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_consolidated_document_period
                ON consolidated_document(company_id, year, month)
            """)

            # One active link per invoice
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS consolidated_invoice_link (
                    company_id TEXT NOT NULL,
                    invoice_id TEXT NOT NULL,
                    document_id TEXT NOT NULL,
                    revision INTEGER NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,

                    PRIMARY KEY (company_id, invoice_id)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_invoice_link_document
                ON consolidated_invoice_link(company_id, document_id)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS consolidation_attempt (
                    company_id TEXT NOT NULL,
                    year INTEGER NOT NULL,
                    month INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    attempt_count INTEGER DEFAULT 0,
                    last_attempt TEXT,
                    next_attempt TEXT,
                    consolidated_document_id TEXT,
                    error TEXT,
                    created_at TEXT,
                    updated_at TEXT,

                    PRIMARY KEY (company_id, year, month)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS consolidation_claim (
                    company_id TEXT NOT NULL,
                    document_id TEXT NOT NULL,
                    owner TEXT NOT NULL,
                    claimed_at TEXT NOT NULL,

                    PRIMARY KEY (company_id, document_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS consolidation_settings (
                    company_id TEXT PRIMARY KEY,
                    auto_consolidation_enabled INTEGER NOT NULL DEFAULT 0,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # Documents
    # =========================================================================

    def _row_to_document(self, row: sqlite3.Row) -> ConsolidatedDocument:
        return ConsolidatedDocument(
            document_id=row["document_id"],
            company_id=row["company_id"],
            year=row["year"],
            month=row["month"],
            revision=row["revision"],
            member_ids=json.loads(row["member_ids"]),
            total_excluding_tax=row["total_excluding_tax"],
            tax_amount=row["tax_amount"],
            rounding=row["rounding"],
            total_payable=row["total_payable"],
            status=DocumentStatus(row["status"]),
            submission_uid=row["submission_uid"],
            uuid=row["uuid"],
            long_id=row["long_id"],
            validated_at=row["validated_at"],
            cancellation_reason=row["cancellation_reason"],
            cancelled_at=row["cancelled_at"],
            last_error=row["last_error"],
            rejected_documents=json.loads(row["rejected_documents"] or "[]"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def latest_document(self, company_id: str, document_id: str) -> Optional[ConsolidatedDocument]:
        conn = self.get_db_connection()
        try:
            row = conn.execute("""
                SELECT * FROM consolidated_document
                WHERE company_id = ? AND document_id = ?
                ORDER BY revision DESC
                LIMIT 1
            """, (company_id, document_id)).fetchone()
            return self._row_to_document(row) if row else None
        finally:
            conn.close()

    def list_documents(self, company_id: str, year: Optional[int] = None) -> List[ConsolidatedDocument]:
        conn = self.get_db_connection()
        try:
            query = "SELECT * FROM consolidated_document WHERE company_id = ?"
            params: list = [company_id]
            if year is not None:
                query += " AND year = ?"
                params.append(year)
            query += " ORDER BY year, month, revision"
            return [self._row_to_document(row) for row in conn.execute(query, params)]
        finally:
            conn.close()

    def active_memberships(
        self,
        company_id: str,
        invoice_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, DocumentStatus]:
        conn = self.get_db_connection()
        try:
            rows = conn.execute("""
                SELECT l.invoice_id, d.status
                FROM consolidated_invoice_link l
                JOIN consolidated_document d
                  ON d.company_id = l.company_id
                 AND d.document_id = l.document_id
                 AND d.revision = l.revision
                WHERE l.company_id = ?
            """, (company_id,)).fetchall()
        finally:
            conn.close()

        memberships = {row["invoice_id"]: DocumentStatus(row["status"]) for row in rows}
        if invoice_ids is not None:
            wanted = set(invoice_ids)
            memberships = {k: v for k, v in memberships.items() if k in wanted}
        return memberships

    def create_document(self, document: ConsolidatedDocument) -> ConsolidatedDocument:
        conn = self.get_db_connection()
        try:
            with immediate_transaction(conn):
                latest = conn.execute("""
                    SELECT revision, status FROM consolidated_document
                    WHERE company_id = ? AND document_id = ?
                    ORDER BY revision DESC
                    LIMIT 1
                """, (document.company_id, document.document_id)).fetchone()

                if latest and DocumentStatus(latest["status"]) in (DocumentStatus.PENDING, DocumentStatus.VALID):
                    raise DuplicateConsolidationError(document.document_id, latest["status"])

                if document.holds_members and document.member_ids:
                    placeholders = ",".join("?" for _ in document.member_ids)
                    taken = conn.execute(f"""
                        SELECT invoice_id FROM consolidated_invoice_link
                        WHERE company_id = ? AND invoice_id IN ({placeholders})
                    """, [document.company_id, *document.member_ids]).fetchall()
                    if taken:
                        raise IneligibleSelectionError([row["invoice_id"] for row in taken])

                revision = (latest["revision"] + 1) if latest else 1
                document = document.model_copy(update={"revision": revision})

                conn.execute("""
                    INSERT INTO consolidated_document
                    (company_id, document_id, revision, year, month, member_ids,
                     total_excluding_tax, tax_amount, rounding, total_payable,
                     status, submission_uid, uuid, long_id, validated_at,
                     cancellation_reason, cancelled_at, last_error, rejected_documents,
                     created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    document.company_id,
                    document.document_id,
                    revision,
                    document.year,
                    document.month,
                    json.dumps(document.member_ids),
                    str(document.total_excluding_tax),
                    str(document.tax_amount),
                    str(document.rounding),
                    str(document.total_payable),
                    document.status.value,
                    document.submission_uid,
                    document.uuid,
                    document.long_id,
                    _ts(document.validated_at),
                    document.cancellation_reason,
                    _ts(document.cancelled_at),
                    document.last_error,
                    json.dumps([r.model_dump(mode="json") for r in document.rejected_documents]),
                    _ts(document.created_at),
                    _ts(document.updated_at),
                ))

                if document.holds_members:
                    conn.executemany("""
                        INSERT INTO consolidated_invoice_link
                        (company_id, invoice_id, document_id, revision)
                        VALUES (?, ?, ?, ?)
                    """, [
                        (document.company_id, invoice_id, document.document_id, revision)
                        for invoice_id in document.member_ids
                    ])
        finally:
            conn.close()

        return document

    def update_document(self, document: ConsolidatedDocument) -> ConsolidatedDocument:
        conn = self.get_db_connection()
        try:
            with conn:
                conn.execute("""
                    UPDATE consolidated_document SET
                        status = ?,
                        submission_uid = ?,
                        uuid = ?,
                        long_id = ?,
                        validated_at = ?,
                        cancellation_reason = ?,
                        cancelled_at = ?,
                        last_error = ?,
                        rejected_documents = ?,
                        updated_at = ?
                    WHERE company_id = ? AND document_id = ? AND revision = ?
                """, (
                    document.status.value,
                    document.submission_uid,
                    document.uuid,
                    document.long_id,
                    _ts(document.validated_at),
                    document.cancellation_reason,
                    _ts(document.cancelled_at),
                    document.last_error,
                    json.dumps([r.model_dump(mode="json") for r in document.rejected_documents]),
                    _ts(document.updated_at),
                    document.company_id,
                    document.document_id,
                    document.revision,
                ))

                if not document.holds_members:
                    conn.execute("""
                        DELETE FROM consolidated_invoice_link
                        WHERE company_id = ? AND document_id = ? AND revision = ?
                    """, (document.company_id, document.document_id, document.revision))
        finally:
            conn.close()

        return document

    # =========================================================================
    # Submission Claims
    # =========================================================================

    def claim_submission(self, company_id: str, document_id: str, owner: str, now: datetime) -> None:
        now = to_business_time(now)
        conn = self.get_db_connection()
        try:
            with immediate_transaction(conn):
                latest = conn.execute("""
                    SELECT status FROM consolidated_document
                    WHERE company_id = ? AND document_id = ?
                    ORDER BY revision DESC
                    LIMIT 1
                """, (company_id, document_id)).fetchone()
                if latest and DocumentStatus(latest["status"]) in (DocumentStatus.PENDING, DocumentStatus.VALID):
                    raise DuplicateConsolidationError(document_id, latest["status"])

                claim = conn.execute("""
                    SELECT owner, claimed_at FROM consolidation_claim
                    WHERE company_id = ? AND document_id = ?
                """, (company_id, document_id)).fetchone()
                if claim and claim["owner"] != owner:
                    claimed_at = to_business_time(datetime.fromisoformat(claim["claimed_at"]))
                    if now - claimed_at < CLAIM_TIMEOUT:
                        raise SubmissionInProgressError(document_id)

                conn.execute("""
                    INSERT OR REPLACE INTO consolidation_claim
                    (company_id, document_id, owner, claimed_at)
                    VALUES (?, ?, ?, ?)
                """, (company_id, document_id, owner, now.isoformat()))
        finally:
            conn.close()

    def release_submission(self, company_id: str, document_id: str, owner: str) -> None:
        conn = self.get_db_connection()
        try:
            with conn:
                conn.execute("""
                    DELETE FROM consolidation_claim
                    WHERE company_id = ? AND document_id = ? AND owner = ?
                """, (company_id, document_id, owner))
        finally:
            conn.close()

    # =========================================================================
    # Attempts
    # =========================================================================

    def _row_to_attempt(self, row: sqlite3.Row) -> AutoConsolidationAttempt:
        return AutoConsolidationAttempt(
            company_id=row["company_id"],
            year=row["year"],
            month=row["month"],
            status=AttemptStatus(row["status"]),
            attempt_count=row["attempt_count"],
            last_attempt=row["last_attempt"],
            next_attempt=row["next_attempt"],
            consolidated_document_id=row["consolidated_document_id"],
            error=row["error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get_attempt(self, company_id: str, period: Period) -> Optional[AutoConsolidationAttempt]:
        conn = self.get_db_connection()
        try:
            row = conn.execute("""
                SELECT * FROM consolidation_attempt
                WHERE company_id = ? AND year = ? AND month = ?
            """, (company_id, period.year, period.month)).fetchone()
            return self._row_to_attempt(row) if row else None
        finally:
            conn.close()

    def save_attempt(self, attempt: AutoConsolidationAttempt) -> AutoConsolidationAttempt:
        conn = self.get_db_connection()
        try:
            with conn:
                conn.execute("""
                    INSERT OR REPLACE INTO consolidation_attempt
                    (company_id, year, month, status, attempt_count, last_attempt,
                     next_attempt, consolidated_document_id, error, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    attempt.company_id,
                    attempt.year,
                    attempt.month,
                    attempt.status.value,
                    attempt.attempt_count,
                    _ts(attempt.last_attempt),
                    _ts(attempt.next_attempt),
                    attempt.consolidated_document_id,
                    attempt.error,
                    _ts(attempt.created_at),
                    _ts(attempt.updated_at),
                ))
        finally:
            conn.close()
        return attempt

    def list_attempts(
        self,
        company_id: str,
        statuses: Optional[Iterable[AttemptStatus]] = None,
    ) -> List[AutoConsolidationAttempt]:
        conn = self.get_db_connection()
        try:
            query = "SELECT * FROM consolidation_attempt WHERE company_id = ?"
            params: list = [company_id]
            if statuses is not None:
                values = [AttemptStatus(s).value for s in statuses]
                if not values:
                    return []
                query += f" AND status IN ({','.join('?' for _ in values)})"
                params.extend(values)
            query += " ORDER BY year, month"
            return [self._row_to_attempt(row) for row in conn.execute(query, params)]
        finally:
            conn.close()

    # =========================================================================
    # Settings
    # =========================================================================

    def get_auto_consolidation_enabled(self, company_id: str) -> Optional[bool]:
        conn = self.get_db_connection()
        try:
            row = conn.execute("""
                SELECT auto_consolidation_enabled FROM consolidation_settings
                WHERE company_id = ?
            """, (company_id,)).fetchone()
            return bool(row["auto_consolidation_enabled"]) if row else None
        finally:
            conn.close()

    def set_auto_consolidation_enabled(self, company_id: str, enabled: bool) -> None:
        conn = self.get_db_connection()
        try:
            with conn:
                conn.execute("""
                    INSERT OR REPLACE INTO consolidation_settings
                    (company_id, auto_consolidation_enabled, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                """, (company_id, 1 if enabled else 0))
        finally:
            conn.close()
