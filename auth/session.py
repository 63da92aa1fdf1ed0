"""
auth/session.py -- Server session helpers.

The session (Starlette SessionMiddleware, signed cookie) carries only the
account id. It exists for OAuth handshake continuity; steady-state API
authentication uses access/refresh tokens. Account lookup is a direct
store call returning an Account or None.
"""

from __future__ import annotations

from typing import Optional

from starlette.requests import Request

from auth.models import Account
from auth.store import AccountStore

SESSION_ACCOUNT_KEY = "account_id"


def establish_session(request: Request, account: Account) -> None:
    request.session[SESSION_ACCOUNT_KEY] = account.id


def load_session_account(request: Request, store: AccountStore) -> Optional[Account]:
    """Return the session's account, or None when there is no (valid) session."""
    account_id = request.session.get(SESSION_ACCOUNT_KEY)
    if not isinstance(account_id, int):
        return None
    return store.get_by_id(account_id)


def destroy_session(request: Request) -> None:
    request.session.clear()
