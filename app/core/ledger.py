"""
Economy ledger: the balance service the engine debits and credits.

The ledger itself is an external collaborator with a two-call interface
(get / set balance). `EconomyLedger` builds the debit and credit operations
on top of it; `SqliteLedger` is the stand-alone adapter used when the
engine runs without an external shop.
"""

import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Union

from app.core.exceptions import InsufficientBalance, LedgerError
from app.core.logger import get_logger

logger = get_logger("ledger")


class EconomyLedger(ABC):
    """Balance service interface plus the debit/credit helpers built on it."""

    @abstractmethod
    def get_balance(self, player_id: str) -> int:
        """Current RP balance of a player."""

    @abstractmethod
    def set_balance(self, player_id: str, amount: int) -> None:
        """Overwrite a player's RP balance."""

    def balance(self, player_id: str) -> int:
        """`get_balance` with failures reported as LedgerError."""
        return self._read(player_id)

    def has_sufficient_funds(self, player_id: str, amount: int) -> bool:
        return self._read(player_id) >= amount

    def debit(self, player_id: str, amount: int) -> int:
        """
        Take `amount` from a player's balance.

        Raises:
            InsufficientBalance: the balance is below `amount`; nothing changes.
            LedgerError: the balance service failed.

        Returns:
            The new balance.
        """
        balance = self._read(player_id)
        if balance < amount:
            raise InsufficientBalance(
                f"Cannot take {amount} RP, player only has {balance} RP",
                player_id=player_id,
                balance=balance,
                amount=amount,
            )
        new_balance = balance - amount
        self._write(player_id, new_balance)
        logger.info(
            f"Debited {amount} RP from {player_id}",
            extra={"player_id": player_id, "amount": amount, "balance": new_balance},
        )
        return new_balance

    def credit(self, player_id: str, amount: int) -> int:
        """Add `amount` to a player's balance. Returns the new balance."""
        new_balance = self._read(player_id) + amount
        self._write(player_id, new_balance)
        logger.info(
            f"Credited {amount} RP to {player_id}",
            extra={"player_id": player_id, "amount": amount, "balance": new_balance},
        )
        return new_balance

    def _read(self, player_id: str) -> int:
        try:
            return int(self.get_balance(player_id))
        except LedgerError:
            raise
        except Exception as e:
            raise LedgerError(f"Could not read balance of {player_id}: {e}") from e

    def _write(self, player_id: str, amount: int) -> None:
        try:
            self.set_balance(player_id, amount)
        except LedgerError:
            raise
        except Exception as e:
            raise LedgerError(f"Could not write balance of {player_id}: {e}") from e


class SqliteLedger(EconomyLedger):
    """SQLite-backed balances. Unknown players start at `starting_balance`."""

    def __init__(self, db_path: Union[str, Path], starting_balance: int = 0):
        self.db_path = str(db_path)
        self.starting_balance = starting_balance
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._connections: Dict[int, sqlite3.Connection] = {}
        logger.info(f"Initializing ledger database at {self.db_path}")
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        connection = self._connections.get(threading.get_ident())
        if connection is None:
            connection = sqlite3.connect(self.db_path, check_same_thread=False)
            connection.row_factory = sqlite3.Row
            self._connections[threading.get_ident()] = connection
        return connection

    def _init_db(self):
        conn = self._get_connection()
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS balances (
                player_id TEXT PRIMARY KEY,
                balance INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """
        )
        conn.commit()

    def get_balance(self, player_id: str) -> int:
        try:
            row = self._get_connection().execute(
                "SELECT balance FROM balances WHERE player_id = ?", (player_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise LedgerError(f"Could not read balance of {player_id}: {e}") from e
        if row is None:
            return self.starting_balance
        return row["balance"]

    def set_balance(self, player_id: str, amount: int) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                """
                INSERT INTO balances (player_id, balance, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(player_id) DO UPDATE SET
                    balance = excluded.balance,
                    updated_at = excluded.updated_at
            """,
                (player_id, amount, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise LedgerError(f"Could not write balance of {player_id}: {e}") from e

    def close(self):
        for connection in self._connections.values():
            connection.close()
        self._connections.clear()
