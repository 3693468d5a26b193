from __future__ import annotations

import pytest

from liftr_chat.application.exceptions import DecodeError, NetworkError, ValidationError
from liftr_chat.domain.value_objects.enums import MessageKind
from liftr_chat.services import chat_service
from tests.conftest import ME, OTHER, make_row


@pytest.mark.asyncio
async def test_load_messages_counts_undecodable_rows(platform):
    platform.tables["messages"] = [make_row(i) for i in range(1, 30)] + [
        {"id": 30, "conversation_id": 1, "user_id": "broken"},
    ]

    page = await chat_service.load_messages(platform, 1, page_size=30)

    assert page.raw_count == 30
    assert len(page.messages) == 29
    assert [m.id for m in page.ascending()][:2] == [1, 2]


@pytest.mark.asyncio
async def test_load_messages_before_id(platform):
    platform.tables["messages"] = [make_row(i) for i in range(1, 11)]

    page = await chat_service.load_messages(platform, 1, page_size=3, before_id=5)

    assert [m.id for m in page.messages] == [4, 3, 2]


@pytest.mark.asyncio
async def test_fetch_message_missing_returns_none(platform):
    assert await chat_service.fetch_message(platform, 123) is None


@pytest.mark.asyncio
async def test_send_message_uses_fresh_client_id(platform):
    platform.rpc_results["send_message"] = 5

    await chat_service.send_message(platform, 1, MessageKind.TEXT, "a")
    await chat_service.send_message(platform, 1, MessageKind.TEXT, "a")

    first, second = (p["p_client_msg_id"] for _, p in platform.rpc_calls)
    assert first != second


@pytest.mark.asyncio
async def test_send_text_without_body_is_rejected(platform):
    with pytest.raises(ValidationError):
        await chat_service.send_message(platform, 1, MessageKind.TEXT, "  ")
    assert platform.rpc_calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("result", [None, "abc", True, {"id": 1}])
async def test_send_message_bad_result_is_decode_error(platform, result):
    platform.rpc_results["send_message"] = result

    with pytest.raises(DecodeError):
        await chat_service.send_message(platform, 1, MessageKind.TEXT, "hi")


@pytest.mark.asyncio
async def test_send_message_accepts_numeric_string(platform):
    platform.rpc_results["send_message"] = "17"

    assert await chat_service.send_message(platform, 1, MessageKind.TEXT, "hi") == 17


@pytest.mark.asyncio
async def test_mark_read_swallows_failures(platform):
    platform.rpc_errors["mark_conversation_read"] = NetworkError("timeout")

    await chat_service.mark_read(platform, 1, 10)
    await chat_service.mark_read(platform, 1, None)

    assert platform.rpc_names() == ["mark_conversation_read"]


@pytest.mark.asyncio
async def test_start_direct_conversation(platform):
    platform.rpc_results["start_direct_conversation"] = 12

    assert await chat_service.start_direct_conversation(platform, OTHER) == 12
    assert platform.rpc_calls == [("start_direct_conversation", {"p_other": str(OTHER)})]


@pytest.mark.asyncio
async def test_list_conversations_newest_first(platform):
    platform.tables["conversations"] = [
        {"id": 1, "kind": "direct", "title": None, "updated_at": "2024-05-01T10:00:00+00:00"},
        {"id": 2, "kind": "group", "title": "Leg day", "updated_at": "2024-05-02T10:00:00+00:00"},
    ]

    convs = await chat_service.list_conversations(platform, ME)

    assert [c.id for c in convs] == [2, 1]
    query = platform.queries[0]
    assert "conversation_participants!inner" in query["columns"]
    assert query["filters"][0].value == str(ME)


@pytest.mark.asyncio
async def test_list_followed_profiles(platform):
    platform.tables["follows"] = [{"follower_id": str(ME), "followee_id": str(OTHER)}]
    platform.tables["profiles"] = [
        {"user_id": str(OTHER), "username": "spotter", "avatar_url": None},
        {"user_id": "00000000-0000-0000-0000-0000000000ff", "username": "stranger"},
    ]

    profiles = await chat_service.list_followed_profiles(platform, ME)

    assert [p.username for p in profiles] == ["spotter"]


@pytest.mark.asyncio
async def test_list_followed_profiles_without_follows(platform):
    assert await chat_service.list_followed_profiles(platform, ME) == []
    assert len(platform.queries) == 1
