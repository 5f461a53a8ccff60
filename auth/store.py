"""
auth/store.py -- SQLAlchemy Core persistence layer for digest accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. The gate only ever sees find_account(), a
plain callable, so any other lookup can be injected in its place.

Security:
  All queries use bound parameters. No f-strings in SQL.

  secret is stored recoverable because RFC 2617 needs it to compute HA1.
  Protect the database file accordingly.

DB path: auth/digestgate_auth.db unless AUTH_DB_URL overrides it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import Account

DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'digestgate_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("secret", Text, nullable=False),
    Column("roles", Text, nullable=False, server_default=""),  # comma-joined role names
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so lookups are not blocked by account writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _join_roles(roles) -> str:
    return ",".join(sorted({r.strip() for r in roles if r and r.strip()}))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore()
        store.create_account(Account(username="admin", secret="adminPassword", roles={"admin"}))
        account = store.find_account("admin")
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def has_accounts(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM accounts")).scalar()
        return (result or 0) > 0

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    username=account.username,
                    secret=account.secret,
                    roles=_join_roles(account.roles),
                    created_at=_now_iso(),
                    is_active=1 if account.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_account(self, username: str) -> Account | None:
        """Return the active account for username (case-sensitive), or None.

        Inactive accounts are reported as absent so the gate treats them
        exactly like unknown usernames.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where((_accounts.c.username == username) & (_accounts.c.is_active == 1))
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def list_accounts(self) -> list[Account]:
        """Return all accounts, active or not, ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(_accounts.select().order_by(_accounts.c.username)).fetchall()
        return [_row_to_account(r) for r in rows]

    def set_active(self, username: str, active: bool) -> bool:
        """Enable or disable an account. Returns False if username was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.username == username).values(is_active=1 if active else 0)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_account(self, username: str) -> bool:
        """Permanently delete an account. Returns True if deleted, False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.delete().where(_accounts.c.username == username))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        secret=row.secret,
        roles={r for r in (row.roles or "").split(",") if r},
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )
