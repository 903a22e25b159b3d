from datetime import timedelta

from conftest import ALICE, BOB, headers, insert_raffle


async def settle_for_bob(container, users, clock):
    raffle_id = await insert_raffle(
        container, users["alice"]["id"], clock() + timedelta(minutes=1),
        entries=[(users["bob"]["id"], 1)],
    )
    clock.advance(minutes=5)
    await container.settlement.settle(raffle_id)
    return raffle_id


async def test_winner_gets_system_mail(client, container, users, clock):
    raffle_id = await settle_for_bob(container, users, clock)

    inbox = (await client.get("/api/mail/inbox", headers=headers(BOB))).json()["data"]
    assert len(inbox) == 1
    assert inbox[0]["category"] == "system"
    assert inbox[0]["raffle_id"] == raffle_id
    assert inbox[0]["from_wallet_address"] == "system@duxxan"

    unread = (await client.get("/api/mail/unread-count", headers=headers(BOB))).json()["data"]
    assert unread["count"] == 1


async def test_mark_read_and_star(client, container, users, clock):
    await settle_for_bob(container, users, clock)
    message = (await client.get("/api/mail/inbox", headers=headers(BOB))).json()["data"][0]

    assert (await client.put(f"/api/mail/{message['id']}/read", headers=headers(BOB))).status_code == 200
    assert (await client.put(f"/api/mail/{message['id']}/star", headers=headers(BOB))).status_code == 200

    unread = (await client.get("/api/mail/unread-count", headers=headers(BOB))).json()["data"]
    assert unread["count"] == 0
    inbox = (await client.get("/api/mail/inbox", headers=headers(BOB))).json()["data"]
    assert inbox[0]["is_starred"] is True


async def test_cannot_touch_someone_elses_mail(client, container, users, clock):
    await settle_for_bob(container, users, clock)
    message = (await client.get("/api/mail/inbox", headers=headers(BOB))).json()["data"][0]

    response = await client.put(f"/api/mail/{message['id']}/read", headers=headers(ALICE))
    assert response.status_code == 404
