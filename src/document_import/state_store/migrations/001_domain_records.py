"""
Migration 001: Domain record tables.

Confirmed imports become bank statements with their transactions, or
invoices / expenses with their lines. Each record carries a natural key
that is unique per tenant; amounts are stored as decimal strings.
"""

import sqlite3

VERSION = 1
NAME = "domain_records"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create statement, transaction, invoice and invoice line tables."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS bank_statements (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tenant_id TEXT NOT NULL,
            import_job_id TEXT NOT NULL,
            natural_key TEXT NOT NULL,
            account_iban TEXT,
            currency TEXT NOT NULL,
            opening_balance TEXT,
            closing_balance TEXT,
            statement_date TEXT,
            arithmetic_valid INTEGER NOT NULL DEFAULT 1,
            transaction_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            UNIQUE (tenant_id, natural_key),
            FOREIGN KEY (import_job_id) REFERENCES import_jobs(id)
        )
    """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS bank_transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tenant_id TEXT NOT NULL,
            statement_id INTEGER NOT NULL,
            import_job_id TEXT NOT NULL,
            natural_key TEXT NOT NULL,
            booking_date TEXT,
            description TEXT NOT NULL,
            amount TEXT NOT NULL,
            direction TEXT NOT NULL,  -- INCOMING, OUTGOING
            counterparty_name TEXT,
            counterparty_iban TEXT,
            reference TEXT,
            currency TEXT NOT NULL,
            created_at TEXT NOT NULL,
            UNIQUE (tenant_id, natural_key),
            FOREIGN KEY (statement_id) REFERENCES bank_statements(id) ON DELETE CASCADE
        )
    """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS invoices (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tenant_id TEXT NOT NULL,
            import_job_id TEXT NOT NULL,
            record_kind TEXT NOT NULL,  -- INVOICE, EXPENSE
            natural_key TEXT NOT NULL,
            vendor_name TEXT,
            vendor_tax_id TEXT,
            vendor_address TEXT,
            vendor_iban TEXT,
            invoice_number TEXT,
            issue_date TEXT,
            due_date TEXT,
            currency TEXT NOT NULL,
            subtotal TEXT,
            tax_amount TEXT,
            total_amount TEXT NOT NULL,
            payment_reference TEXT,
            arithmetic_valid INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            UNIQUE (tenant_id, natural_key),
            FOREIGN KEY (import_job_id) REFERENCES import_jobs(id)
        )
    """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS invoice_lines (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            invoice_id INTEGER NOT NULL,
            position INTEGER NOT NULL,
            description TEXT,
            quantity TEXT,
            unit_price TEXT,
            tax_rate TEXT,
            amount TEXT NOT NULL,
            FOREIGN KEY (invoice_id) REFERENCES invoices(id) ON DELETE CASCADE
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_bank_transactions_statement "
        "ON bank_transactions(statement_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_invoice_lines_invoice ON invoice_lines(invoice_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the domain record tables."""
    conn.execute("DROP TABLE IF EXISTS invoice_lines")
    conn.execute("DROP TABLE IF EXISTS invoices")
    conn.execute("DROP TABLE IF EXISTS bank_transactions")
    conn.execute("DROP TABLE IF EXISTS bank_statements")
