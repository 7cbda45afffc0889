"""Database repository for user accounts."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping

from psycopg import errors
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account, Role
from .domain.contracts import AccountFilter, CreateAccountInput
from .domain.errors import ConflictError
from .security.passwords import PasswordHasher

logger = logging.getLogger(__name__)

_PUBLIC_COLUMNS = (
    "account_id",
    "name",
    "email",
    "created_at",
    "updated_at",
    "role",
    "is_active",
    "is_blocked",
    "is_verified",
    "is_kyc_completed",
    "is_2fa_enabled",
    "refresh_token",
    "verify_token",
    "verify_token_expiry",
    "forgot_password_token",
    "forgot_password_token_expiry",
)

# Columns callers may change through update_account. The password is only
# ever written through create_account/replace_password, which hash it.
MUTABLE_COLUMNS = frozenset(
    {
        "name",
        "role",
        "is_active",
        "is_blocked",
        "is_verified",
        "is_kyc_completed",
        "is_2fa_enabled",
        "refresh_token",
        "verify_token",
        "verify_token_expiry",
        "forgot_password_token",
        "forgot_password_token_expiry",
    }
)


def _select_list(include_password: bool) -> str:
    columns = list(_PUBLIC_COLUMNS)
    if include_password:
        columns.append("password_hash")
    return ", ".join(columns)


def check_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a partial update against the mutable column whitelist."""
    unknown = set(changes) - MUTABLE_COLUMNS
    if unknown:
        raise ValueError(f"columns not updatable: {', '.join(sorted(unknown))}")
    normalised = dict(changes)
    if isinstance(normalised.get("role"), Role):
        normalised["role"] = normalised["role"].value
    return normalised


class AccountRepository:
    """Postgres-backed account persistence.

    Every raw password written through this class is hashed here, so callers
    can neither skip hashing nor apply it twice.
    """

    def __init__(self, pool: ConnectionPool, hasher: PasswordHasher) -> None:
        """Store the connection pool and the hasher used for password writes."""
        self._pool = pool
        self._hasher = hasher

    def create_account(self, payload: CreateAccountInput) -> Account:
        """Insert a new account and return it without its password hash."""
        account_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        password_hash = self._hasher.hash(payload.password)
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO accounts (
                            account_id, name, email, password_hash, role,
                            verify_token, verify_token_expiry, created_at, updated_at
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_select_list(False)}
                        """,
                        (
                            account_id,
                            payload.name,
                            payload.email,
                            password_hash,
                            payload.role.value,
                            payload.verify_token,
                            payload.verify_token_expiry,
                            now,
                            now,
                        ),
                    )
                    row = cur.fetchone()
                conn.commit()
        except errors.UniqueViolation as exc:
            # lost a registration race against another request for the same email
            raise ConflictError() from exc
        return self._map_record(row)

    def get_account(self, account_id: str, *, include_password: bool = False) -> Account | None:
        """Fetch an account by identifier or return ``None``."""
        return self._fetch_one("account_id = %s", (account_id,), include_password)

    def find_by_email(self, email: str, *, include_password: bool = False) -> Account | None:
        return self._fetch_one("email = %s", (email,), include_password)

    def find_by_verify_token(self, token: str) -> Account | None:
        if not token:
            return None
        return self._fetch_one("verify_token = %s", (token,), False)

    def find_by_reset_token(self, token: str) -> Account | None:
        if not token:
            return None
        return self._fetch_one("forgot_password_token = %s", (token,), False)

    def list_by_role(self, role: Role = Role.USER) -> list[Account]:
        """Return every account holding ``role``, oldest first."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_select_list(False)} FROM accounts WHERE role = %s ORDER BY created_at",
                    (role.value,),
                )
                rows = cur.fetchall()
        return [self._map_record(row) for row in rows]

    def update_account(self, account_id: str, changes: Mapping[str, Any]) -> Account | None:
        """Apply a partial update and return the post-update record."""
        return self._update(account_id, check_changes(changes))

    def replace_password(
        self,
        account_id: str,
        password: str,
        changes: Mapping[str, Any] | None = None,
    ) -> Account | None:
        """Hash ``password`` and store it together with ``changes`` in one statement."""
        columns = check_changes(changes or {})
        columns["password_hash"] = self._hasher.hash(password)
        return self._update(account_id, columns)

    def query_accounts(self, account_filter: AccountFilter) -> list[Account]:
        """Return accounts matching the admin filter, newest first."""
        clauses: list[str] = []
        params: list[Any] = []

        if account_filter.role is not None:
            clauses.append("role = %s")
            params.append(account_filter.role.value)
        if account_filter.created_after:
            clauses.append("created_at >= %s")
            params.append(account_filter.created_after)
        if account_filter.created_before:
            clauses.append("created_at <= %s")
            params.append(account_filter.created_before)
        for column in ("is_active", "is_verified", "is_kyc_completed"):
            allowed = getattr(account_filter, column)
            if allowed is not None:
                clauses.append(f"{column} = ANY(%s)")
                params.append(sorted(allowed))

        where_sql = " AND ".join(clauses) if clauses else "TRUE"
        query = f"""
            SELECT {_select_list(False)}
            FROM accounts
            WHERE {where_sql}
            ORDER BY created_at DESC
            LIMIT %s
        """
        params.append(account_filter.limit)

        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                rows = cur.fetchall()
        return [self._map_record(row) for row in rows]

    def _fetch_one(self, where_sql: str, params: tuple, include_password: bool) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_select_list(include_password)} FROM accounts WHERE {where_sql}",
                    params,
                )
                row = cur.fetchone()
        if not row:
            return None
        return self._map_record(row)

    def _update(self, account_id: str, columns: dict[str, Any]) -> Account | None:
        if not columns:
            return self.get_account(account_id)
        assignments = ", ".join(f"{name} = %s" for name in columns)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    UPDATE accounts
                    SET {assignments}, updated_at = %s
                    WHERE account_id = %s
                    RETURNING {_select_list(False)}
                    """,
                    (*columns.values(), datetime.now(timezone.utc), account_id),
                )
                row = cur.fetchone()
            conn.commit()
        if not row:
            logger.info("update skipped, account %s not found", account_id)
            return None
        return self._map_record(row)

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        values = dict(zip((*_PUBLIC_COLUMNS, "password_hash"), row))
        values["account_id"] = str(values["account_id"])
        values["role"] = Role(values["role"])
        values["verify_token"] = values["verify_token"] or ""
        values["forgot_password_token"] = values["forgot_password_token"] or ""
        return Account(**values)
