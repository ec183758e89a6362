from frontend.conversation import Conversation, is_temp_id


def server_message(id, role="user", generation=None, **extra):
    message = {
        "id": id,
        "chatId": "c1",
        "userId": "u1",
        "content": "a red fox" if role == "user" else "",
        "role": role,
        "type": "text" if role == "user" else "image",
        "generationId": generation["id"] if generation else None,
        "generation": generation,
    }
    message.update(extra)
    return message


def generation(status, id="g1", **extra):
    return {"id": id, "status": status, **extra}


def test_begin_submit_appends_temp_message():
    conv = Conversation("c1", [server_message("m0")])
    temp = conv.begin_submit("a red fox", "u1")

    assert is_temp_id(temp["id"])
    assert temp["role"] == "user"
    assert [m["id"] for m in conv.messages] == ["m0", temp["id"]]


def test_temp_ids_are_unique():
    conv = Conversation("c1")
    ids = {conv.begin_submit("x", "u1")["id"] for _ in range(20)}
    assert len(ids) == 20


def test_commit_replaces_temp_at_its_position():
    conv = Conversation("c1", [server_message("m0")])
    temp = conv.begin_submit("a red fox", "u1")
    # message khác đến trong lúc chờ server
    conv.commit("missing-temp", [server_message("m-interim")])

    conv.commit(
        temp["id"],
        [server_message("m1"), server_message("m2", role="assistant", generation=generation("pending"))],
    )

    ids = [m["id"] for m in conv.messages]
    assert ids == ["m0", "m1", "m2", "m-interim"]
    assert not any(is_temp_id(i) for i in ids)


def test_commit_skips_messages_already_present():
    conv = Conversation("c1", [server_message("m0")])
    temp = conv.begin_submit("a red fox", "u1")
    # server sync đã mang về m1 trước khi request trả lời
    conv.commit("other", [server_message("m1")])

    conv.commit(temp["id"], [server_message("m1"), server_message("m2", role="assistant")])

    ids = [m["id"] for m in conv.messages]
    assert ids.count("m1") == 1
    assert set(ids) == {"m0", "m1", "m2"}


def test_rollback_removes_only_temp():
    conv = Conversation("c1", [server_message("m0")])
    temp = conv.begin_submit("a red fox", "u1")
    conv.rollback(temp["id"])
    conv.rollback(temp["id"])
    assert [m["id"] for m in conv.messages] == ["m0"]


def test_apply_generation_only_touches_generation():
    assistant = server_message("m2", role="assistant", generation=generation("pending"), content="keep")
    conv = Conversation("c1", [server_message("m1"), assistant])

    assert conv.apply_generation(generation("completed", fileIds=["f1"])) is True

    updated = conv.messages[1]
    assert updated["generation"]["status"] == "completed"
    assert updated["content"] == "keep"
    assert updated["id"] == "m2"
    assert conv.messages[0]["generation"] is None


def test_apply_generation_never_regresses():
    conv = Conversation(
        "c1", [server_message("m2", role="assistant", generation=generation("generating"))]
    )
    assert conv.apply_generation(generation("pending")) is False
    assert conv.messages[0]["generation"]["status"] == "generating"

    conv.apply_generation(generation("failed", errorMessage="boom"))
    assert conv.apply_generation(generation("generating")) is False
    assert conv.apply_generation(generation("completed")) is False
    assert conv.messages[0]["generation"]["status"] == "failed"


def test_apply_generation_updates_every_message_with_that_id():
    shared = generation("pending")
    conv = Conversation(
        "c1",
        [
            server_message("a", role="assistant", generation=dict(shared)),
            server_message("b", role="assistant", generation=dict(shared)),
            server_message("c", role="assistant", generation=generation("pending", id="g2")),
        ],
    )
    conv.apply_generation(generation("completed"))
    statuses = [m["generation"]["status"] for m in conv.messages]
    assert statuses == ["completed", "completed", "pending"]


def test_in_flight_generation_ids():
    conv = Conversation(
        "c1",
        [
            server_message("m1"),
            server_message("a", role="assistant", generation=generation("pending")),
            server_message("b", role="assistant", generation=generation("generating")),
            server_message("c", role="assistant", generation=generation("completed", id="g3")),
        ],
    )
    assert conv.in_flight_generation_ids() == ["g1"]


def test_messages_returns_a_copy():
    conv = Conversation("c1", [server_message("m2", role="assistant", generation=generation("pending"))])
    conv.messages[0]["generation"]["status"] = "completed"
    assert conv.messages[0]["generation"]["status"] == "pending"
