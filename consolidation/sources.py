"""
Invoice Sources

The invoicing subsystem owns invoices; the consolidation core only reads the
candidates for a period through an InvoiceSource.
"""

import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Union

from core.models import Invoice, InvoiceLine, Period


class InvoiceSource(ABC):
    """Read-only access to candidate invoices."""

    @abstractmethod
    async def fetch_eligible_invoices(self, period: Period) -> List[Invoice]:
        """Candidate invoices issued within the period, in source order."""


class InMemoryInvoiceSource(InvoiceSource):
    """Invoice source over a fixed list, for development and tests."""

    def __init__(self, invoices: Iterable[Invoice] = ()):
        self._invoices: List[Invoice] = list(invoices)

    def add(self, invoice: Invoice) -> None:
        self._invoices.append(invoice)

    async def fetch_eligible_invoices(self, period: Period) -> List[Invoice]:
        return [inv for inv in self._invoices if period.contains(inv.issued_at)]


class SQLiteInvoiceSource(InvoiceSource):
    """
    Invoice source backed by the invoicing subsystem's sqlite tables.

    Expects ``invoices`` (one row per invoice, ``company_id`` scoped) and
    ``invoice_lines`` (``invoice_id`` foreign key, ordered by ``line_no``).
    Timestamps may be ISO strings or epoch milliseconds.
    """

    def __init__(self, db_path: Union[str, Path], company_id: str):
        self.db_path = Path(db_path)
        self.company_id = company_id

    def get_db_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    async def fetch_eligible_invoices(self, period: Period) -> List[Invoice]:
        conn = self.get_db_connection()
        try:
            rows = conn.execute("""
                SELECT * FROM invoices
                WHERE company_id = ?
                ORDER BY rowid
            """, (self.company_id,)).fetchall()

            invoices = []
            for row in rows:
                invoice = Invoice(
                    id=row["id"],
                    customer_id=row["customer_id"],
                    issued_at=row["issued_at"],
                    created_at=row["created_at"],
                    status=row["status"] or "active",
                    total_excluding_tax=row["total_excluding_tax"],
                    tax_amount=row["tax_amount"],
                    rounding=row["rounding"],
                    total_payable=row["total_payable"],
                )
                if period.contains(invoice.issued_at):
                    invoices.append(invoice)

            if not invoices:
                return []

            lines = self._fetch_lines(conn, [inv.id for inv in invoices])
        finally:
            conn.close()

        return [
            inv.model_copy(update={"lines": lines.get(inv.id, [])})
            for inv in invoices
        ]

    def _fetch_lines(self, conn: sqlite3.Connection, invoice_ids: List[str]) -> Dict[str, List[InvoiceLine]]:
        placeholders = ",".join("?" for _ in invoice_ids)
        rows = conn.execute(f"""
            SELECT * FROM invoice_lines
            WHERE invoice_id IN ({placeholders})
            ORDER BY invoice_id, line_no
        """, invoice_ids).fetchall()

        lines: Dict[str, List[InvoiceLine]] = {}
        for row in rows:
            lines.setdefault(row["invoice_id"], []).append(InvoiceLine(
                description=row["description"],
                quantity=row["quantity"],
                unit_price=row["unit_price"],
                total=row["total"],
                tax=row["tax"],
                is_subtotal=bool(row["is_subtotal"]),
            ))
        return lines
