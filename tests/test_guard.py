"""Tests for the session guard."""

import pytest

from notes_site.backend.domain import Account, Session, Unauthorized
from notes_site.backend.guard import Allow, Deny, guard, require_account


@pytest.mark.parametrize("account_id", ["a1", "someone@example.com", "x"])
def test_session_with_account_is_allowed(account_id):
    session = Session(Account(account_id))
    assert guard(session) == Allow(Account(account_id))


@pytest.mark.parametrize("session", [Session(), Session(None), None])
def test_session_without_account_is_sent_home(session):
    assert guard(session) == Deny("/")


def test_custom_home():
    assert guard(Session(), home="/welcome").location == "/welcome"


def test_guard_does_not_touch_the_session():
    session = Session(Account("a1"))
    guard(session)
    guard(session)
    assert session.account == Account("a1")


def test_require_account_raises_for_api_callers():
    assert require_account(Session(Account("a1"))) == Account("a1")
    with pytest.raises(Unauthorized) as info:
        require_account(Session(), home="/login")
    assert info.value.location == "/login"
    assert info.value.status_code == 401
