"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account is the mapper. Route and
service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Ephemeral tokens (email verification, password reset) are consumed with a
  single conditional UPDATE whose WHERE clause matches both the token value
  and an unexpired deadline. The affected row count decides the winner, so
  two requests racing on the same token can never both succeed.

Provider identities live in account_identities rather than one column per
provider. UNIQUE(provider, external_id) gives the "each provider id unique
across accounts" guarantee, and adding a provider needs no schema change.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateAccount
from auth.models import Account

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'authgate.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("username", String(100), unique=True),  # NULL allowed; SQLite treats NULLs as distinct
    Column("hashed_password", Text),  # NULL for OAuth-created accounts
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("verification_token", String(64), index=True),
    Column("verification_token_expiry", Float),  # epoch seconds
    Column("reset_password_token", String(64), index=True),
    Column("reset_password_expiry", Float),  # epoch seconds
    Column("created_at", String(32), nullable=False),
    Column("last_login", Text),
)

_identities = Table(
    "account_identities",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("provider", String(30), nullable=False),  # "github", "google", "discord"
    Column("external_id", String(255), nullable=False),  # provider's stable user id
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("provider", "external_id", name="uq_identity_provider_external_id"),
    UniqueConstraint("account_id", "provider", name="uq_identity_account_provider"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind token updates."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities and their provider identities.

    Usage:
        store = AccountStore()
        account_id = store.create_account(Account(email="ana@mail.com", hashed_password=...))
        account = store.get_by_email("ana@mail.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_account(
        self,
        account: Account,
        provider: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> int:
        """Insert an account (and optionally its provider identity) atomically.

        Both inserts share one transaction, so an OAuth account never exists
        without its identity row. Any unique-constraint violation (email,
        username, or provider id) is raised as DuplicateAccount.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _accounts.insert().values(
                        email=normalize_email(account.email),
                        username=account.username,
                        hashed_password=account.hashed_password,
                        is_verified=1 if account.is_verified else 0,
                        verification_token=account.verification_token,
                        verification_token_expiry=account.verification_token_expiry,
                        created_at=_now_iso(),
                    )
                )
                account_id = result.inserted_primary_key[0]
                if provider is not None and external_id is not None:
                    conn.execute(
                        _identities.insert().values(
                            account_id=account_id,
                            provider=provider,
                            external_id=external_id,
                            created_at=_now_iso(),
                        )
                    )
        except IntegrityError as exc:
            raise DuplicateAccount() from exc
        return account_id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, account_id: int) -> Optional[Account]:
        with self.engine.connect() as conn:
            return self._fetch_one(conn, _accounts.c.id == account_id)

    def get_by_email(self, email: str) -> Optional[Account]:
        """Look up an account by email (case-insensitive; emails are stored lowercased)."""
        with self.engine.connect() as conn:
            return self._fetch_one(conn, _accounts.c.email == normalize_email(email))

    def get_by_username(self, username: str) -> Optional[Account]:
        with self.engine.connect() as conn:
            return self._fetch_one(conn, _accounts.c.username == username)

    def get_by_provider_id(self, provider: str, external_id: str) -> Optional[Account]:
        """Look up the account linked to a provider identity. None if not linked."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_identities.c.account_id).where(
                    (_identities.c.provider == provider) & (_identities.c.external_id == external_id)
                )
            ).fetchone()
            if row is None:
                return None
            return self._fetch_one(conn, _accounts.c.id == row.account_id)

    def exists_email_or_username(self, email: str, username: Optional[str]) -> bool:
        """Return True if another account already uses this email or username."""
        clauses = [_accounts.c.email == normalize_email(email)]
        if username:
            clauses.append(_accounts.c.username == username)
        with self.engine.connect() as conn:
            row = conn.execute(select(_accounts.c.id).where(or_(*clauses)).limit(1)).fetchone()
        return row is not None

    def count_accounts(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Email verification tokens
    # ------------------------------------------------------------------

    def set_verification_token(self, account_id: int, token: str, expiry: float) -> bool:
        """Store a fresh verification token, replacing any previous one."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(verification_token=token, verification_token_expiry=expiry)
            )
        return result.rowcount > 0

    def verify_with_token(self, token: str, now: Optional[float] = None) -> Optional[Account]:
        """Mark the owner of an unexpired verification token verified and clear the token.

        Returns the updated Account, or None when no account holds this token
        with a deadline in the future (unknown, expired, or already consumed).
        """
        now = time.time() if now is None else now
        live = (_accounts.c.verification_token == token) & (_accounts.c.verification_token_expiry > now)
        with self.engine.begin() as conn:
            row = conn.execute(select(_accounts.c.id).where(live)).fetchone()
            if row is None:
                return None
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == row.id) & live)
                .values(is_verified=1, verification_token=None, verification_token_expiry=None)
            )
            if result.rowcount != 1:
                return None
            return self._fetch_one(conn, _accounts.c.id == row.id)

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def set_reset_token(self, account_id: int, token: str, expiry: float) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(reset_password_token=token, reset_password_expiry=expiry)
            )
        return result.rowcount > 0

    def get_by_reset_token(self, token: str, now: Optional[float] = None) -> Optional[Account]:
        """Return the account holding this reset token if it has not expired."""
        now = time.time() if now is None else now
        with self.engine.connect() as conn:
            return self._fetch_one(
                conn,
                (_accounts.c.reset_password_token == token) & (_accounts.c.reset_password_expiry > now),
            )

    def reset_password_with_token(
        self, token: str, hashed_password: str, now: Optional[float] = None
    ) -> Optional[Account]:
        """Replace the password of the reset-token holder and clear the token.

        Single conditional UPDATE: at most one caller per token gets a row back.
        """
        now = time.time() if now is None else now
        live = (_accounts.c.reset_password_token == token) & (_accounts.c.reset_password_expiry > now)
        with self.engine.begin() as conn:
            row = conn.execute(select(_accounts.c.id).where(live)).fetchone()
            if row is None:
                return None
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == row.id) & live)
                .values(hashed_password=hashed_password, reset_password_token=None, reset_password_expiry=None)
            )
            if result.rowcount != 1:
                return None
            return self._fetch_one(conn, _accounts.c.id == row.id)

    def purge_expired_tokens(self, now: Optional[float] = None) -> int:
        """Clear every expired verification/reset token pair. Returns rows touched.

        Run periodically from the API lifespan; expired tokens are already
        unusable, this only keeps stale values out of the table.
        """
        now = time.time() if now is None else now
        with self.engine.begin() as conn:
            verification = conn.execute(
                _accounts.update()
                .where(_accounts.c.verification_token_expiry <= now)
                .values(verification_token=None, verification_token_expiry=None)
            )
            reset = conn.execute(
                _accounts.update()
                .where(_accounts.c.reset_password_expiry <= now)
                .values(reset_password_token=None, reset_password_expiry=None)
            )
        return verification.rowcount + reset.rowcount

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    def update_last_login(self, account_id: int) -> None:
        """Stamp the current UTC timestamp as last_login (password login and OAuth callback)."""
        with self.engine.begin() as conn:
            conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(last_login=_now_iso()))

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fetch_one(self, conn: Connection, where) -> Optional[Account]:
        row = conn.execute(_accounts.select().where(where)).fetchone()
        if row is None:
            return None
        identities = conn.execute(
            select(_identities.c.provider, _identities.c.external_id).where(_identities.c.account_id == row.id)
        ).fetchall()
        return _row_to_account(row, {i.provider: i.external_id for i in identities})


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row, provider_ids: dict[str, str]) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        username=row.username,
        hashed_password=row.hashed_password,
        provider_ids=provider_ids,
        is_verified=bool(row.is_verified),
        verification_token=row.verification_token,
        verification_token_expiry=row.verification_token_expiry,
        reset_password_token=row.reset_password_token,
        reset_password_expiry=row.reset_password_expiry,
        created_at=row.created_at,
        last_login=row.last_login,
    )
