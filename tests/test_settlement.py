from datetime import timedelta

import pytest
from conftest import ALICE, BOB, CAROL, headers, insert_raffle, load_raffle

from duxxan.config import Settings
from duxxan.exceptions import NoTicketsError, RaffleCancelled
from duxxan.models import Raffle
from duxxan.services.draw import DrawService
from duxxan.services.job_queue import JobNotReady
from duxxan.services.settlement import SettlementService, settlement_key


async def test_second_ticket_owner_wins_forced_draw(container, users, clock):
    raffle_id = await insert_raffle(
        container,
        users["alice"]["id"],
        clock() + timedelta(hours=1),
        max_tickets=100,
        ticket_price="10",
        entries=[(users["bob"]["id"], 3), (users["carol"]["id"], 7)],
    )
    clock.advance(hours=2)

    assert await container.settlement.settle(raffle_id, forced_draw=5)

    raffle = await load_raffle(container, raffle_id)
    assert raffle.winner_id == users["carol"]["id"]
    assert raffle.is_active is False
    assert raffle.winning_draw == 5
    assert raffle.total_units_at_draw == 10


async def test_never_settles_before_end_date(container, users, clock):
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], clock() + timedelta(hours=1),
        entries=[(users["bob"]["id"], 1)],
    )

    with pytest.raises(JobNotReady):
        await container.settlement.settle(raffle_id)

    raffle = await load_raffle(container, raffle_id)
    assert raffle.winner_id is None
    assert raffle.is_active is True


async def test_scheduled_job_waits_for_end_then_settles(container, users, clock):
    end_date = clock() + timedelta(minutes=10)
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], end_date, entries=[(users["bob"]["id"], 2)],
    )
    container.settlement.schedule(raffle_id, end_date)

    assert await container.queue.run_once() == 0

    clock.advance(minutes=10)
    assert await container.queue.run_once() == 1

    raffle = await load_raffle(container, raffle_id)
    assert raffle.winner_id == users["bob"]["id"]
    assert container.queue.find_by_key(settlement_key(raffle_id)) is None


async def test_early_trigger_is_rescheduled_not_retried(container, users, clock):
    end_date = clock() + timedelta(minutes=10)
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], end_date, entries=[(users["bob"]["id"], 2)],
    )
    # job queued to run now even though the raffle has not ended
    job_id = container.queue.add_job(
        "RAFFLE_END_CALCULATION", {"raffle_id": raffle_id}, key=settlement_key(raffle_id)
    )

    await container.queue.run_once()

    job = container.queue.get(job_id)
    assert job.retries == 0
    assert job.process_at == end_date


async def test_no_tickets_leaves_winner_unset(container, users, clock):
    raffle_id = await insert_raffle(container, users["alice"]["id"], clock() + timedelta(minutes=1))
    clock.advance(minutes=5)

    with pytest.raises(NoTicketsError):
        await container.settlement.settle(raffle_id)

    raffle = await load_raffle(container, raffle_id)
    assert raffle.winner_id is None
    assert raffle.settlement_failed_at is not None
    assert raffle.settlement_error


async def test_no_tickets_job_fails_permanently(container, users, clock):
    end_date = clock() + timedelta(minutes=1)
    raffle_id = await insert_raffle(container, users["alice"]["id"], end_date)
    container.settlement.schedule(raffle_id, end_date)
    clock.advance(minutes=5)

    await container.queue.run_once()

    assert container.queue.stats()["failed"] == 1
    # failed raffles are not picked up again by the sweep
    assert await container.settlement.sweep_due() == 0


async def test_settles_at_most_once(client, container, users, clock):
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], clock() + timedelta(minutes=1),
        entries=[(users["bob"]["id"], 3), (users["carol"]["id"], 7)],
    )
    clock.advance(minutes=5)

    assert await container.settlement.settle(raffle_id, forced_draw=1) is True
    assert await container.settlement.settle(raffle_id, forced_draw=10) is False

    raffle = await load_raffle(container, raffle_id)
    assert raffle.winner_id == users["bob"]["id"]
    assert raffle.settlement_version == 1

    # exactly one system mail each for winner and creator
    bob_mail = await client.get("/api/mail/inbox", headers=headers(BOB))
    alice_mail = await client.get("/api/mail/inbox", headers=headers(ALICE))
    assert len(bob_mail.json()["data"]) == 1
    assert len(alice_mail.json()["data"]) == 1
    carol_mail = await client.get("/api/mail/inbox", headers=headers(CAROL))
    assert carol_mail.json()["data"] == []


async def test_persisted_draw_can_be_verified(client, container, users, clock):
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], clock() + timedelta(minutes=1),
        entries=[(users["bob"]["id"], 3), (users["carol"]["id"], 7)],
    )
    clock.advance(minutes=5)
    await container.settlement.settle(raffle_id)

    response = await client.get(f"/api/raffles/{raffle_id}/draw")
    draw = response.json()["data"]

    assert DrawService.verify_draw(
        raffle_id, draw["draw_seed"], draw["draw_commitment"],
        draw["total_units_at_draw"], draw["winning_draw"],
    )
    assert draw["winner_id"] in (users["bob"]["id"], users["carol"]["id"])


async def test_sweep_reschedules_lost_jobs(container, users, clock):
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], clock() + timedelta(minutes=1),
        entries=[(users["bob"]["id"], 1)],
    )
    # still open: nothing to do
    assert await container.settlement.sweep_due() == 0

    clock.advance(minutes=5)
    assert await container.settlement.sweep_due() == 1
    assert container.queue.find_by_key(settlement_key(raffle_id)) is not None
    # already queued
    assert await container.settlement.sweep_due() == 0

    await container.queue.run_once()
    raffle = await load_raffle(container, raffle_id)
    assert raffle.winner_id == users["bob"]["id"]


async def test_unapproved_raffle_is_forfeited_after_deadline(client, container, users, clock):
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], clock() + timedelta(minutes=1),
        entries=[(users["bob"]["id"], 1)],
    )
    clock.advance(minutes=5)
    await container.settlement.settle(raffle_id)

    clock.advance(days=5)
    assert await container.settlement.expire_approvals() == 0

    clock.advance(days=2)
    assert await container.settlement.expire_approvals() == 1

    state = await client.get(f"/api/raffles/{raffle_id}/state")
    assert state.json()["data"]["state"] == "FORFEITED"

    response = await client.put(f"/api/raffles/{raffle_id}/approve", headers=headers(BOB))
    assert response.status_code == 409
    assert response.json()["success"] is False


async def test_mutually_approved_raffle_is_not_forfeited(client, container, users, clock):
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], clock() + timedelta(minutes=1),
        entries=[(users["bob"]["id"], 1)],
    )
    clock.advance(minutes=5)
    await container.settlement.settle(raffle_id)

    assert (await client.put(f"/api/raffles/{raffle_id}/approve", headers=headers(ALICE))).status_code == 200
    assert (await client.put(f"/api/raffles/{raffle_id}/approve", headers=headers(BOB))).status_code == 200

    clock.advance(days=10)
    assert await container.settlement.expire_approvals() == 0

    state = await client.get(f"/api/raffles/{raffle_id}/state")
    assert state.json()["data"]["state"] == "MUTUALLY_APPROVED"


async def test_cancel_drops_the_queued_settlement(container, users, clock):
    end_date = clock() + timedelta(minutes=10)
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], end_date, entries=[(users["bob"]["id"], 2)],
    )
    container.settlement.schedule(raffle_id, end_date)

    async with container.database.session() as db:
        await container.raffles.end_raffle(db, raffle_id, cancel=True)

    assert container.queue.find_by_key(settlement_key(raffle_id)) is None
    clock.advance(minutes=30)
    assert await container.queue.run_once() == 0
    # ended but cancelled: the sweep leaves it alone
    assert await container.settlement.sweep_due() == 0

    raffle = await load_raffle(container, raffle_id)
    assert raffle.winner_id is None
    assert raffle.is_active is False


async def test_cancelled_raffle_job_fails_without_a_winner(container, users, clock):
    end_date = clock() + timedelta(minutes=10)
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], end_date, entries=[(users["bob"]["id"], 2)],
    )
    async with container.database.session() as db:
        await container.raffles.end_raffle(db, raffle_id, cancel=True)
    # a job that was already in flight when the raffle got cancelled
    container.settlement.schedule(raffle_id, end_date)
    clock.advance(minutes=30)

    await container.queue.run_once()

    assert container.queue.stats()["failed"] == 1
    raffle = await load_raffle(container, raffle_id)
    assert raffle.winner_id is None
    assert raffle.settlement_version == 0

    with pytest.raises(RaffleCancelled):
        await container.settlement.settle(raffle_id)


async def test_forfeit_rechecks_approvals(container, users, clock):
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], clock() + timedelta(minutes=1),
        entries=[(users["bob"]["id"], 1)],
    )
    clock.advance(minutes=5)
    await container.settlement.settle(raffle_id)
    clock.advance(days=10)

    async with container.database.session() as db:
        raffle = await db.get(Raffle, raffle_id)
        raffle.is_approved_by_creator = True
        raffle.is_approved_by_winner = True
        await db.commit()

    # approvals landed after the candidate scan; the update must not forfeit
    async with container.database.session() as db:
        assert await SettlementService.forfeit(db, raffle_id, clock()) is False
        await db.commit()

    raffle = await load_raffle(container, raffle_id)
    assert raffle.is_forfeited is False


async def test_forfeit_respects_the_deadline(container, users, clock):
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], clock() + timedelta(minutes=1),
        entries=[(users["bob"]["id"], 1)],
    )
    clock.advance(minutes=5)
    await container.settlement.settle(raffle_id)

    async with container.database.session() as db:
        assert await SettlementService.forfeit(db, raffle_id, clock() + timedelta(days=1)) is False
        assert await SettlementService.forfeit(db, raffle_id, clock() + timedelta(days=7)) is True
        await db.commit()

    raffle = await load_raffle(container, raffle_id)
    assert raffle.is_forfeited is True


def test_default_approval_window_is_six_days():
    assert Settings().approval_window_days == 6
