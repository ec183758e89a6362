import pytest

from backend.errors import NotFound
from backend.store import GenerationStore, JobQueue


async def new_generation(store: GenerationStore):
    return await store.create(user_id="u1", prompt="a red fox", provider="fake", model="fake-gen")


@pytest.mark.asyncio
async def test_created_pending(rds):
    store = GenerationStore(rds)
    generation = await new_generation(store)
    loaded = await store.get(generation.id)
    assert loaded.status == "pending"
    assert loaded.file_ids is None
    assert loaded.result_urls is None


@pytest.mark.asyncio
async def test_happy_path_transitions(rds):
    store = GenerationStore(rds)
    generation = await new_generation(store)

    generating = await store.transition(generation.id, "generating")
    assert generating.status == "generating"

    completed = await store.transition(generation.id, "completed", file_ids=["f1"], generation_time=42)
    assert completed.status == "completed"
    assert (await store.get(generation.id)).file_ids == ["f1"]
    assert (await store.get(generation.id)).generation_time == 42


@pytest.mark.asyncio
async def test_pending_can_fail_directly(rds):
    store = GenerationStore(rds)
    generation = await new_generation(store)
    failed = await store.transition(generation.id, "failed", error_message="boom")
    assert failed.status == "failed"
    assert failed.error_message == "boom"


@pytest.mark.asyncio
async def test_pending_cannot_skip_to_completed(rds):
    store = GenerationStore(rds)
    generation = await new_generation(store)
    assert await store.transition(generation.id, "completed", file_ids=["f1"]) is None
    assert (await store.get(generation.id)).status == "pending"


@pytest.mark.asyncio
@pytest.mark.parametrize("terminal", ["completed", "failed"])
async def test_terminal_states_are_absorbing(rds, terminal):
    store = GenerationStore(rds)
    generation = await new_generation(store)
    await store.transition(generation.id, "generating")
    await store.transition(generation.id, terminal, error_message="x" if terminal == "failed" else None)
    before = await store.get(generation.id)

    for status in ("pending", "generating", "completed", "failed"):
        assert await store.transition(generation.id, status, error_message="late") is None

    assert await store.get(generation.id) == before


@pytest.mark.asyncio
async def test_reentrant_transition_is_a_noop(rds):
    store = GenerationStore(rds)
    generation = await new_generation(store)
    await store.transition(generation.id, "generating")
    before = await store.get(generation.id)

    assert await store.transition(generation.id, "generating") is None
    assert (await store.get(generation.id)).updated_at == before.updated_at


@pytest.mark.asyncio
async def test_transition_unknown_generation(rds):
    with pytest.raises(NotFound):
        await GenerationStore(rds).transition("missing", "generating")


@pytest.mark.asyncio
async def test_job_queue_is_fifo(rds):
    queue = JobQueue(rds)
    await queue.enqueue({"generation_id": "a"})
    await queue.enqueue({"generation_id": "b"})
    assert await queue.size() == 2
    assert (await queue.pop(timeout=1))["generation_id"] == "a"
    assert (await queue.pop(timeout=1))["generation_id"] == "b"
