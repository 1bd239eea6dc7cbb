"""Tests for conversation context loading and naming rules."""

from app.core.conversation_context import (
    build_detailed_message,
    build_message_sender_name,
    build_participant_display_name,
    fetch_conversation_context,
    fetch_message_rows,
)


def test_participant_display_name_precedence():
    user = {"full_name": " ", "first_name": "Léa", "last_name": "Martin", "email": "lea@x.io"}

    assert build_participant_display_name({"participant_name": "Animatrice"}, user, 0) == "Animatrice"
    assert build_participant_display_name({}, user, 0) == "Léa Martin"
    assert build_participant_display_name({}, {"email": "lea@x.io"}, 0) == "lea@x.io"
    assert build_participant_display_name({}, None, 2) == "Participant 3"


def test_message_sender_name_precedence():
    assert build_message_sender_name({"metadata": '{"senderName": "Léa"}'}, None, 0) == "Léa"
    assert build_message_sender_name({"sender_type": "ai"}, None, 0) == "Agent"
    assert build_message_sender_name({"sender_type": "user"}, {"full_name": "Marc"}, 0) == "Marc"
    assert build_message_sender_name({"sender_type": "user"}, None, 1) == "Participant 2"


def test_detailed_message_shape():
    message = build_detailed_message(
        {
            "id": "m-1",
            "ask_session_id": "ask-1",
            "content": "Bonjour",
            "sender_type": "ai",
            "created_at": "2025-01-01T00:00:00+00:00",
            "plan_step_id": "row-1",
        },
        None,
        0,
        ask_key="atelier",
    )

    assert message == {
        "id": "m-1",
        "askKey": "atelier",
        "askSessionId": "ask-1",
        "content": "Bonjour",
        "type": "text",
        "senderType": "ai",
        "senderId": None,
        "senderName": "Agent",
        "timestamp": "2025-01-01T00:00:00+00:00",
        "metadata": None,
        "planStepId": "row-1",
    }


def test_fetch_message_rows_merges_legacy_messages(fake_db):
    fake_db.seed(
        "messages",
        {"id": "old", "ask_session_id": "ask-1", "conversation_thread_id": None, "content": "a"},
        {"id": "t1", "ask_session_id": "ask-1", "conversation_thread_id": "thread-1", "content": "b"},
        {"id": "t2", "ask_session_id": "ask-1", "conversation_thread_id": "thread-2", "content": "c"},
    )

    assert [row["id"] for row in fetch_message_rows("ask-1", "thread-1")] == ["old", "t1"]
    assert [row["id"] for row in fetch_message_rows("ask-1", None)] == ["old", "t1", "t2"]


def test_fetch_conversation_context_individual_mode(fake_db):
    fake_db.seed("profiles", {"id": "u-1", "full_name": "Léa Martin", "description": "PO"})
    fake_db.seed("projects", {"id": "proj-1", "name": "Projet", "system_prompt": "Contexte projet"})
    fake_db.seed(
        "ask_participants",
        {"id": "p-1", "ask_session_id": "ask-1", "user_id": "u-1", "role": "PO", "joined_at": "1"},
        {"id": "p-2", "ask_session_id": "ask-1", "participant_name": "Invité", "joined_at": "2"},
    )
    session = {
        "id": "ask-1",
        "ask_key": "atelier",
        "project_id": "proj-1",
        "conversation_mode": "individual_parallel",
    }

    context = fetch_conversation_context(session, profile_id="u-1")

    assert [p.name for p in context.participants] == ["Léa Martin", "Invité"]
    assert context.participants[0].description == "PO"
    assert context.conversation_thread["user_id"] == "u-1"
    assert context.project["system_prompt"] == "Contexte projet"
    assert context.challenge is None
    assert context.conversation_plan is None
    assert context.messages == []
    assert "u-1" in context.users_by_id
