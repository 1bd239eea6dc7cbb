"""Tests for invite-token and session authentication of ASK viewers."""

import pytest

from app.core.session_auth import (
    AuthContext,
    load_auth_from_invite_token,
    load_auth_from_session,
    load_full_auth_context,
    load_participant_membership,
)


@pytest.fixture
def auth_db(fake_db):
    fake_db.seed(
        "profiles",
        {"id": "prof-1", "auth_id": "auth-1", "first_name": "Léa", "last_name": "Martin", "email": "lea@x.io"},
        {"id": "prof-2", "auth_id": "auth-2", "full_name": "Marc Dubois", "email": "marc@x.io"},
    )
    fake_db.seed(
        "ask_participants",
        {
            "id": "part-1",
            "ask_session_id": "ask-1",
            "user_id": "prof-1",
            "invite_token": "invite-1",
            "participant_name": "Léa (atelier)",
            "role": "spokesperson",
        },
        {"id": "part-orphan", "ask_session_id": "ask-1", "invite_token": "invite-orphan"},
        {"id": "part-2", "ask_session_id": "ask-1", "user_id": "prof-2", "is_spokesperson": False, "role": "member"},
    )
    fake_db.auth.users_by_token = {"jwt-1": "auth-1", "jwt-2": "auth-2", "jwt-ghost": "auth-ghost"}
    return fake_db


def test_invite_token_auth(auth_db):
    ctx = load_auth_from_invite_token("invite-1")

    assert ctx.auth_method == "invite_token"
    assert ctx.profile_id == "prof-1"
    assert ctx.participant_id == "part-1"
    assert ctx.is_spokesperson is True


def test_invite_token_without_profile_or_unknown(auth_db):
    assert load_auth_from_invite_token("invite-orphan") is None
    assert load_auth_from_invite_token("unknown") is None


def test_invite_token_lookup_error_returns_none(auth_db):
    auth_db.errors["ask_participants"] = RuntimeError("db down")

    assert load_auth_from_invite_token("invite-1") is None


def test_session_auth(auth_db):
    ctx = load_auth_from_session("jwt-1")

    assert ctx.auth_method == "session"
    assert ctx.profile_id == "prof-1"
    assert ctx.participant_name == "Léa Martin"
    assert ctx.participant_id is None


def test_session_auth_failures(auth_db):
    assert load_auth_from_session(None) is None
    assert load_auth_from_session("bad-jwt") is None
    assert load_auth_from_session("bad-jwt", is_dev_bypass=True) is None
    assert load_auth_from_session("jwt-ghost") is None


def test_membership_fills_participant(auth_db):
    ctx = load_participant_membership(AuthContext(profile_id="prof-2", auth_method="session"), "ask-1")

    assert ctx.participant_id == "part-2"
    assert ctx.participant_role == "member"
    assert ctx.is_spokesperson is False

    outsider = AuthContext(profile_id="prof-9", auth_method="session")
    assert load_participant_membership(outsider, "ask-1") is outsider


def test_full_auth_prefers_invite_token(auth_db):
    ctx, viewer = load_full_auth_context("ask-1", invite_token="invite-1", access_token="jwt-2")

    assert ctx.auth_method == "invite_token"
    assert viewer.to_api() == {
        "participantId": "part-1",
        "profileId": "prof-1",
        "isSpokesperson": True,
        "name": "Léa (atelier)",
        "email": None,
        "role": "spokesperson",
    }


def test_full_auth_falls_back_to_session(auth_db):
    ctx, viewer = load_full_auth_context("ask-1", invite_token="unknown", access_token="jwt-2")

    assert ctx.auth_method == "session"
    assert viewer.participant_id == "part-2"
    assert viewer.name == "Marc Dubois"
    assert viewer.email == "marc@x.io"


def test_full_auth_anonymous(auth_db):
    ctx, viewer = load_full_auth_context("ask-1")

    assert ctx.auth_method == "none"
    assert viewer is None
