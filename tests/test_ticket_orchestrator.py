import pytest

from supporthub.tickets.models import SyncStatus, Ticket, TicketEventType
from supporthub.tickets.orchestrator import PreconditionFailedError, SyncFailureError


@pytest.mark.asyncio
async def test_create_ticket_syncs_counter_and_records_events(orchestrator, ticket_store, customer_store, make_ticket):
    ticket = await orchestrator.create_ticket(make_ticket(title="A"), "k1")

    stored = await ticket_store.find_by_id(ticket.id)
    assert stored is not None
    assert stored.title == "A"
    assert stored.idempotency_key == "k1"
    assert stored.sync_status is SyncStatus.SYNCED
    assert [event.event_type for event in stored.events] == [
        TicketEventType.CREATED,
        TicketEventType.STATUS_CHANGED,
    ]
    assert stored.events[0].description == "Ticket created"
    assert stored.events[0].performed_by == "c1"
    assert customer_store.counts["c1"] == 1


@pytest.mark.asyncio
async def test_same_idempotency_key_returns_first_ticket(orchestrator, customer_store, make_ticket):
    first = await orchestrator.create_ticket(make_ticket(title="A"), "k1")
    second = await orchestrator.create_ticket(make_ticket(title="B"), "k1")

    assert second.id == first.id
    assert second.title == "A"
    assert customer_store.counts["c1"] == 1
    assert customer_store.increment_calls == 1


@pytest.mark.asyncio
async def test_distinct_keys_create_distinct_tickets(orchestrator, customer_store, make_ticket):
    first = await orchestrator.create_ticket(make_ticket(title="A"), "k1")
    second = await orchestrator.create_ticket(make_ticket(title="B"), "k2")

    assert first.id != second.id
    assert customer_store.counts["c1"] == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("key", [None, "", "   "])
async def test_missing_key_is_generated(orchestrator, make_ticket, key):
    ticket = await orchestrator.create_ticket(make_ticket(), key)

    assert ticket.idempotency_key
    assert ticket.idempotency_key.strip() == ticket.idempotency_key


@pytest.mark.asyncio
async def test_unknown_customer_persists_nothing(orchestrator, ticket_store, customer_store, make_ticket):
    with pytest.raises(PreconditionFailedError):
        await orchestrator.create_ticket(make_ticket(customer="ghost"), "k2")

    assert await ticket_store.find_by_idempotency_key("k2") is None
    assert ticket_store.save_calls == 0
    assert customer_store.increment_calls == 0


@pytest.mark.asyncio
async def test_counter_failure_leaves_failed_ticket(orchestrator, ticket_store, customer_store, make_ticket):
    customer_store.increment_error = ConnectionError("mysql went away")

    with pytest.raises(SyncFailureError) as exc_info:
        await orchestrator.create_ticket(make_ticket(), "k3")

    assert "mysql went away" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, ConnectionError)
    stored = await ticket_store.find_by_idempotency_key("k3")
    assert stored is not None
    assert stored.sync_status is SyncStatus.FAILED
    assert [event.event_type for event in stored.events] == [TicketEventType.CREATED]
    assert exc_info.value.ticket.id == stored.id
    assert customer_store.counts["c1"] == 0


@pytest.mark.asyncio
async def test_retrying_failed_creation_returns_failed_ticket(orchestrator, customer_store, make_ticket):
    customer_store.increment_error = ConnectionError("down")
    with pytest.raises(SyncFailureError):
        await orchestrator.create_ticket(make_ticket(), "k4")

    customer_store.increment_error = None
    replay = await orchestrator.create_ticket(make_ticket(), "k4")

    assert replay.sync_status is SyncStatus.FAILED
    assert customer_store.counts["c1"] == 0


@pytest.mark.asyncio
async def test_concurrent_duplicate_falls_back_to_winner(orchestrator, ticket_store, customer_store, make_ticket):
    winner = Ticket(
        customer_external_id="c1",
        title="winner",
        description="first writer",
        idempotency_key="k5",
        sync_status=SyncStatus.SYNCED,
    )
    ticket_store.before_insert = lambda _ticket: ticket_store.insert(winner)

    result = await orchestrator.create_ticket(make_ticket(title="loser"), "k5")

    assert result.id == winner.id
    assert result.title == "winner"
    assert len(ticket_store.tickets) == 1
    assert customer_store.increment_calls == 0


@pytest.mark.asyncio
async def test_transient_save_failure_is_retried(orchestrator, ticket_store, make_ticket):
    ticket_store.fail_saves = 2

    ticket = await orchestrator.create_ticket(make_ticket(), "k6")

    assert ticket.sync_status is SyncStatus.SYNCED
    assert (await ticket_store.find_by_id(ticket.id)).sync_status is SyncStatus.SYNCED


@pytest.mark.asyncio
async def test_recover_ticket_syncs_failed_ticket(orchestrator, ticket_store, customer_store, make_ticket):
    customer_store.increment_error = ConnectionError("down")
    with pytest.raises(SyncFailureError):
        await orchestrator.create_ticket(make_ticket(), "k7")
    customer_store.increment_error = None

    failed = await ticket_store.find_by_idempotency_key("k7")
    assert await orchestrator.recover_ticket(failed) is True

    stored = await ticket_store.find_by_id(failed.id)
    assert stored.sync_status is SyncStatus.SYNCED
    assert stored.events[-1].event_type is TicketEventType.STATUS_CHANGED
    assert stored.events[-1].description.endswith("(recovered)")
    assert customer_store.counts["c1"] == 1


@pytest.mark.asyncio
async def test_recover_ticket_swallows_failures(orchestrator, ticket_store, customer_store, make_ticket):
    customer_store.increment_error = ConnectionError("down")
    with pytest.raises(SyncFailureError):
        await orchestrator.create_ticket(make_ticket(), "k8")

    failed = await ticket_store.find_by_idempotency_key("k8")
    assert await orchestrator.recover_ticket(failed) is False

    stored = await ticket_store.find_by_id(failed.id)
    assert stored.sync_status is SyncStatus.FAILED
    assert len(stored.events) == 1


@pytest.mark.asyncio
async def test_recover_ticket_for_deleted_customer_is_noop(orchestrator, ticket_store, customer_store, make_ticket):
    customer_store.increment_error = ConnectionError("down")
    with pytest.raises(SyncFailureError):
        await orchestrator.create_ticket(make_ticket(), "k9")
    customer_store.increment_error = None
    customer_store.remove("c1")
    calls_before = customer_store.increment_calls

    failed = await ticket_store.find_by_idempotency_key("k9")
    assert await orchestrator.recover_ticket(failed) is False

    assert customer_store.increment_calls == calls_before
    assert (await ticket_store.find_by_id(failed.id)).sync_status is SyncStatus.FAILED


@pytest.mark.asyncio
async def test_recovery_replay_does_not_double_count(orchestrator, ticket_store, customer_store, make_ticket):
    ticket = await orchestrator.create_ticket(make_ticket(), "k10")
    # counter applied, but the SYNCED write was lost
    ticket_store.tickets[ticket.id].sync_status = SyncStatus.FAILED
    stale = await ticket_store.find_by_id(ticket.id)

    assert await orchestrator.recover_ticket(stale) is True
    assert customer_store.counts["c1"] == 1


@pytest.mark.asyncio
async def test_insert_committed_before_connection_reset_still_syncs(orchestrator, ticket_store, customer_store, make_ticket):
    ticket_store.fail_after_write = 1

    ticket = await orchestrator.create_ticket(make_ticket(), "k11")

    assert ticket.sync_status is SyncStatus.SYNCED
    assert len(ticket_store.tickets) == 1
    stored = await ticket_store.find_by_id(ticket.id)
    assert stored.sync_status is SyncStatus.SYNCED
    assert [event.event_type for event in stored.events] == [
        TicketEventType.CREATED,
        TicketEventType.STATUS_CHANGED,
    ]
    assert customer_store.counts["c1"] == 1


@pytest.mark.asyncio
async def test_duplicate_key_on_own_row_continues_to_counter(orchestrator, ticket_store, customer_store, make_ticket):
    ticket_store.collide_after_insert = True

    ticket = await orchestrator.create_ticket(make_ticket(), "k12")

    assert ticket.sync_status is SyncStatus.SYNCED
    assert (await ticket_store.find_by_idempotency_key("k12")).sync_status is SyncStatus.SYNCED
    assert customer_store.counts["c1"] == 1


@pytest.mark.asyncio
async def test_lost_synced_write_stores_failed_without_success_event(orchestrator, ticket_store, customer_store, make_ticket):
    async def break_ticket_store():
        ticket_store.fail_saves = 3

    customer_store.on_increment = break_ticket_store

    with pytest.raises(SyncFailureError):
        await orchestrator.create_ticket(make_ticket(), "k13")

    stored = await ticket_store.find_by_idempotency_key("k13")
    assert stored.sync_status is SyncStatus.FAILED
    assert [event.event_type for event in stored.events] == [TicketEventType.CREATED]
    assert customer_store.counts["c1"] == 1

    assert await orchestrator.recover_ticket(stored) is True
    assert customer_store.counts["c1"] == 1
    assert (await ticket_store.find_by_id(stored.id)).sync_status is SyncStatus.SYNCED


@pytest.mark.asyncio
async def test_recover_ticket_keeps_edits_made_after_load(orchestrator, ticket_service, ticket_store, customer_store, make_ticket):
    customer_store.increment_error = ConnectionError("down")
    with pytest.raises(SyncFailureError):
        await orchestrator.create_ticket(make_ticket(), "k14")
    customer_store.increment_error = None

    loaded = await ticket_store.find_by_idempotency_key("k14")
    await ticket_service.add_comment(loaded.id, content="still waiting", author_external_id="c1")

    assert await orchestrator.recover_ticket(loaded) is True

    stored = await ticket_store.find_by_id(loaded.id)
    assert [comment.content for comment in stored.comments] == ["still waiting"]
    assert [event.event_type for event in stored.events] == [
        TicketEventType.CREATED,
        TicketEventType.COMMENT_ADDED,
        TicketEventType.STATUS_CHANGED,
    ]
