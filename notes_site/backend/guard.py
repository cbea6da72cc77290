from dataclasses import dataclass
from typing import Union

from .domain import Account, Session, Unauthorized


@dataclass(frozen=True)
class Allow:
    account: Account


@dataclass(frozen=True)
class Deny:
    location: str
    reason: str = "No account in session"


GuardResult = Union[Allow, Deny]


def guard(session: Session, home: str = "/") -> GuardResult:
    """Let a session through only if it carries an account; otherwise send it home."""
    account = getattr(session, "account", None) if session is not None else None
    if isinstance(account, Account):
        return Allow(account)
    return Deny(home)


def require_account(session: Session, home: str = "/") -> Account:
    """Same decision as guard(), raising Unauthorized for API-style callers."""
    decision = guard(session, home)
    if isinstance(decision, Deny):
        raise Unauthorized(decision.reason, location=decision.location)
    return decision.account
