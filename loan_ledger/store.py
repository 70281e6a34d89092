"""
Loan Store Module

Persistence collaborator for plans and payment logs, with in-memory (testing)
and SQLite (persistence) implementations. Amounts are stored as integer minor
units and dates as ISO strings.

Writers pass the payment count they read; append_payment and
remove_last_payment compare it with the stored count inside one transaction
and raise ConcurrentModification on a mismatch. Together with the per-loan
lock() this serialises every mutation of a single loan.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Union
from datetime import datetime, timezone
import sqlite3
import json
import threading
from pathlib import Path
from contextlib import contextmanager

from .plans import LoanPlan
from .ledger import Ledger, PaymentRecord
from .errors import LoanNotFound, NothingToUndo, ConcurrentModification


class _LoanLock:
    """Re-entrant lock of one loan plus the number of threads using it"""

    def __init__(self):
        self.rlock = threading.RLock()
        self.users = 0


class LoanStore(ABC):
    """Abstract interface for ledger storage backends"""

    def __init__(self):
        self._loan_locks: Dict[str, _LoanLock] = {}
        self._locks_guard = threading.Lock()

    @abstractmethod
    def save_plan(self, loan_id: str, plan: LoanPlan) -> None:
        """Store the plan of a new loan; plans are never overwritten"""
        pass

    @abstractmethod
    def load_plan(self, loan_id: str) -> LoanPlan:
        """Load a plan or raise LoanNotFound"""
        pass

    @abstractmethod
    def load_payments(self, loan_id: str) -> List[PaymentRecord]:
        """Payments of a loan in insertion order"""
        pass

    @abstractmethod
    def append_payment(self, loan_id: str, record: PaymentRecord, expected_count: int) -> PaymentRecord:
        """Append a payment if the log still holds expected_count records"""
        pass

    @abstractmethod
    def remove_last_payment(self, loan_id: str, expected_count: int) -> PaymentRecord:
        """Remove the most recently inserted payment if the log still holds expected_count records"""
        pass

    @abstractmethod
    def set_defaulted(self, loan_id: str, defaulted: bool) -> None:
        pass

    @abstractmethod
    def is_defaulted(self, loan_id: str) -> bool:
        pass

    @abstractmethod
    def list_loan_ids(self) -> List[str]:
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def load_ledger(self, loan_id: str) -> Ledger:
        """Rebuild the ledger of a loan from its plan and payment log"""
        plan = self.load_plan(loan_id)
        return Ledger(
            plan=plan,
            loan_id=loan_id,
            payments=tuple(self.load_payments(loan_id)),
            defaulted=self.is_defaulted(loan_id),
        )

    @contextmanager
    def lock(self, loan_id: str) -> Iterator[None]:
        """
        Per-loan mutual exclusion; different loans never block each other

        An entry lives only while some thread holds or waits on it, so the
        registry stays as small as the number of loans in flight.
        """
        with self._locks_guard:
            loan_lock = self._loan_locks.get(loan_id)
            if loan_lock is None:
                loan_lock = self._loan_locks[loan_id] = _LoanLock()
            loan_lock.users += 1
        try:
            with loan_lock.rlock:
                yield
        finally:
            with self._locks_guard:
                loan_lock.users -= 1
                if loan_lock.users == 0:
                    del self._loan_locks[loan_id]


class InMemoryLoanStore(LoanStore):
    """In-memory storage implementation for testing"""

    def __init__(self):
        super().__init__()
        self._plans: Dict[str, Dict] = {}
        self._payments: Dict[str, List[Dict]] = {}
        self._defaulted: Dict[str, bool] = {}
        self._lock = threading.RLock()

    def _require_loan(self, loan_id: str) -> None:
        if loan_id not in self._plans:
            raise LoanNotFound(loan_id)

    def save_plan(self, loan_id: str, plan: LoanPlan) -> None:
        with self._lock:
            if loan_id in self._plans:
                raise ValueError(f"Loan {loan_id} already exists")
            # Deep copy to prevent external mutation
            self._plans[loan_id] = json.loads(json.dumps(plan.to_dict()))
            self._payments[loan_id] = []
            self._defaulted[loan_id] = False

    def load_plan(self, loan_id: str) -> LoanPlan:
        with self._lock:
            self._require_loan(loan_id)
            return LoanPlan.from_dict(self._plans[loan_id])

    def load_payments(self, loan_id: str) -> List[PaymentRecord]:
        with self._lock:
            self._require_loan(loan_id)
            return [PaymentRecord.from_dict(data) for data in self._payments[loan_id]]

    def append_payment(self, loan_id: str, record: PaymentRecord, expected_count: int) -> PaymentRecord:
        with self._lock:
            self._require_loan(loan_id)
            payments = self._payments[loan_id]
            if len(payments) != expected_count:
                raise ConcurrentModification(loan_id, expected_count, len(payments))
            payments.append(json.loads(json.dumps(record.to_dict())))
            return record

    def remove_last_payment(self, loan_id: str, expected_count: int) -> PaymentRecord:
        with self._lock:
            self._require_loan(loan_id)
            payments = self._payments[loan_id]
            if len(payments) != expected_count:
                raise ConcurrentModification(loan_id, expected_count, len(payments))
            if not payments:
                raise NothingToUndo(loan_id)
            return PaymentRecord.from_dict(payments.pop())

    def set_defaulted(self, loan_id: str, defaulted: bool) -> None:
        with self._lock:
            self._require_loan(loan_id)
            self._defaulted[loan_id] = defaulted

    def is_defaulted(self, loan_id: str) -> bool:
        with self._lock:
            self._require_loan(loan_id)
            return self._defaulted[loan_id]

    def list_loan_ids(self) -> List[str]:
        with self._lock:
            return list(self._plans.keys())

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


PLAN_COLUMNS = (
    "principal", "kind", "periodic_amount", "period_count", "given_date", "anchor_date",
    "rate_percent", "interest_total", "asked_amount", "given_amount",
)

PAYMENT_COLUMNS = (
    "id", "loan_id", "amount", "paid_date", "mode", "sequence", "kind", "note", "recorded_at",
)


class SQLiteLoanStore(LoanStore):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        super().__init__()
        self.db_path = str(db_path)
        # Autocommit mode; writes open their own BEGIN IMMEDIATE transaction
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        with self._lock:
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._ensure_tables()

    def _ensure_tables(self) -> None:
        self._connection.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id TEXT PRIMARY KEY,
                principal INTEGER NOT NULL,
                kind TEXT NOT NULL,
                periodic_amount INTEGER NOT NULL,
                period_count INTEGER,
                given_date TEXT NOT NULL,
                anchor_date TEXT NOT NULL,
                rate_percent TEXT,
                interest_total INTEGER NOT NULL,
                asked_amount INTEGER,
                given_amount INTEGER,
                defaulted INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)
        self._connection.execute("""
            CREATE TABLE IF NOT EXISTS payments (
                id TEXT NOT NULL UNIQUE,
                loan_id TEXT NOT NULL REFERENCES loans(id),
                amount INTEGER NOT NULL,
                paid_date TEXT NOT NULL,
                mode TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                kind TEXT NOT NULL,
                note TEXT NOT NULL DEFAULT '',
                recorded_at TEXT NOT NULL,
                PRIMARY KEY (loan_id, sequence)
            )
        """)

    @contextmanager
    def _immediate(self) -> Iterator[sqlite3.Connection]:
        """Write transaction holding the database write lock from the first read"""
        with self._lock:
            self._connection.execute("BEGIN IMMEDIATE")
            try:
                yield self._connection
                self._connection.execute("COMMIT")
            except Exception:
                self._connection.execute("ROLLBACK")
                raise

    def _require_loan(self, connection: sqlite3.Connection, loan_id: str) -> sqlite3.Row:
        row = connection.execute("SELECT * FROM loans WHERE id = ?", (loan_id,)).fetchone()
        if row is None:
            raise LoanNotFound(loan_id)
        return row

    def _count(self, connection: sqlite3.Connection, loan_id: str) -> int:
        return connection.execute(
            "SELECT COUNT(*) AS count FROM payments WHERE loan_id = ?", (loan_id,)
        ).fetchone()['count']

    def save_plan(self, loan_id: str, plan: LoanPlan) -> None:
        data = plan.to_dict()
        columns = ", ".join(("id",) + PLAN_COLUMNS + ("created_at",))
        placeholders = ", ".join("?" * (len(PLAN_COLUMNS) + 2))
        values = (loan_id,) + tuple(data[column] for column in PLAN_COLUMNS) + (
            datetime.now(timezone.utc).isoformat(),
        )
        with self._immediate() as connection:
            if connection.execute("SELECT 1 FROM loans WHERE id = ?", (loan_id,)).fetchone():
                raise ValueError(f"Loan {loan_id} already exists")
            connection.execute(f"INSERT INTO loans ({columns}) VALUES ({placeholders})", values)

    def load_plan(self, loan_id: str) -> LoanPlan:
        with self._lock:
            row = self._require_loan(self._connection, loan_id)
            return LoanPlan.from_dict({column: row[column] for column in PLAN_COLUMNS})

    def load_payments(self, loan_id: str) -> List[PaymentRecord]:
        with self._lock:
            self._require_loan(self._connection, loan_id)
            rows = self._connection.execute(
                "SELECT * FROM payments WHERE loan_id = ? ORDER BY sequence", (loan_id,)
            ).fetchall()
            return [PaymentRecord.from_dict(dict(row)) for row in rows]

    def append_payment(self, loan_id: str, record: PaymentRecord, expected_count: int) -> PaymentRecord:
        data = record.to_dict()
        columns = ", ".join(PAYMENT_COLUMNS)
        placeholders = ", ".join("?" * len(PAYMENT_COLUMNS))
        with self._immediate() as connection:
            self._require_loan(connection, loan_id)
            actual = self._count(connection, loan_id)
            if actual != expected_count:
                raise ConcurrentModification(loan_id, expected_count, actual)
            connection.execute(
                f"INSERT INTO payments ({columns}) VALUES ({placeholders})",
                tuple(data[column] for column in PAYMENT_COLUMNS)
            )
        return record

    def remove_last_payment(self, loan_id: str, expected_count: int) -> PaymentRecord:
        with self._immediate() as connection:
            self._require_loan(connection, loan_id)
            actual = self._count(connection, loan_id)
            if actual != expected_count:
                raise ConcurrentModification(loan_id, expected_count, actual)
            row = connection.execute(
                "SELECT * FROM payments WHERE loan_id = ? ORDER BY sequence DESC LIMIT 1", (loan_id,)
            ).fetchone()
            if row is None:
                raise NothingToUndo(loan_id)
            connection.execute(
                "DELETE FROM payments WHERE loan_id = ? AND sequence = ?", (loan_id, row['sequence'])
            )
            return PaymentRecord.from_dict(dict(row))

    def set_defaulted(self, loan_id: str, defaulted: bool) -> None:
        with self._immediate() as connection:
            self._require_loan(connection, loan_id)
            connection.execute("UPDATE loans SET defaulted = ? WHERE id = ?", (int(defaulted), loan_id))

    def is_defaulted(self, loan_id: str) -> bool:
        with self._lock:
            return bool(self._require_loan(self._connection, loan_id)['defaulted'])

    def list_loan_ids(self) -> List[str]:
        with self._lock:
            rows = self._connection.execute("SELECT id FROM loans ORDER BY created_at").fetchall()
            return [row['id'] for row in rows]

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_store(database_url: str) -> LoanStore:
    """
    Build a store from a URL: "memory://" or "sqlite:///path/to.db"
    ("sqlite:///:memory:" for a throwaway database)
    """
    if database_url in ("memory://", "memory"):
        return InMemoryLoanStore()
    prefix = "sqlite:///"
    if database_url.startswith(prefix):
        return SQLiteLoanStore(database_url[len(prefix):] or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
