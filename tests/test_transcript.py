from src.roomchat.client.transcript import COMPLETE, PENDING, PERSISTED, STREAMING, Transcript
from src.roomchat.domain.chat_models import SYSTEM_AUTHOR


def _saved(mid="u1", text="hello", call_ai=True, assistant="a1"):
    return {
        "type": "user_message_saved",
        "data": {"id": mid, "text": text, "timestamp": "t1", "shouldCallAI": call_ai, "assistantMessageId": assistant},
    }


def _chunk(full, delta="", mid="a1"):
    return {"type": "ai_response_chunk", "data": {"id": mid, "delta": delta, "fullContentSoFar": full}}


def test_saved_event_replaces_optimistic_entry_and_opens_placeholder():
    t = Transcript(user_id="alice")
    t.add_optimistic("hello")
    assert t.messages[0].state == PENDING
    assert t.busy

    t.apply(_saved())

    assert [(m.id, m.state) for m in t.messages] == [("u1", PERSISTED), ("a1", STREAMING)]
    assert t.messages[1].reply_to == "u1"
    assert t.messages[1].author_id == SYSTEM_AUTHOR
    assert t.messages[1].is_assistant


def test_chunks_use_server_cumulative_text_not_local_concatenation():
    t = Transcript()
    t.add_optimistic("hello")
    t.apply(_saved())
    t.apply(_chunk("Hel", "Hel"))
    # A dropped delta does not cause drift: the snapshot wins.
    t.apply(_chunk("Hello wor", "wor"))

    assert t.messages[-1].body == "Hello wor"


def test_complete_finalizes_the_streaming_record():
    t = Transcript()
    t.add_optimistic("hello")
    t.apply(_saved())
    t.apply(_chunk("Hi"))
    t.apply({"type": "ai_response_complete", "data": {"id": "a1", "fullText": "Hi there", "timestamp": "t2"}})

    assert t.messages[-1].state == COMPLETE
    assert t.messages[-1].body == "Hi there"
    assert not t.busy


def test_error_removes_placeholder_but_keeps_persisted_user_message():
    t = Transcript()
    t.add_optimistic("hello")
    t.apply(_saved())
    t.apply(_chunk("partial"))
    t.apply({"type": "error", "data": {"message": "Provider down", "details": "x", "code": "ProviderNetworkFailure"}})

    assert [(m.id, m.state) for m in t.messages] == [("u1", PERSISTED)]
    assert t.error == "Provider down"
    assert not t.busy

    t.dismiss_error()
    assert t.error is None


def test_error_before_save_drops_the_optimistic_entry():
    t = Transcript()
    t.add_optimistic("hello")
    t.apply({"type": "error", "data": {"message": "Chat room not found"}})

    assert t.messages == []
    assert t.error == "Chat room not found"


def test_no_ai_path_leaves_no_placeholder():
    t = Transcript()
    t.add_optimistic("hi all")
    t.apply(_saved(call_ai=False, assistant=None))

    assert [m.state for m in t.messages] == [PERSISTED]
    assert not t.busy


def test_replace_with_history_rebuilds_in_server_order():
    t = Transcript()
    t.add_optimistic("hello")
    t.apply(_saved())
    t.apply(_chunk("Hi"))

    t.replace_with_history(
        [
            {"id": "u0", "authorId": "bob", "authorLabel": "bob@example.com", "body": "earlier", "createdAt": "t0"},
            {"id": "u1", "authorId": "alice", "authorLabel": "alice@example.com", "body": "hello", "createdAt": "t1"},
            {"id": "a1", "authorId": "system", "authorLabel": "system", "body": "Hi there", "createdAt": "t2", "replyTo": "u1"},
        ]
    )

    assert t.bodies() == ["earlier", "hello", "Hi there"]
    assert t.find("a1").state == COMPLETE
    assert t.find("a1").is_assistant
    assert t.find("u0").state == PERSISTED
