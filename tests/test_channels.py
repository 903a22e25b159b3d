from conftest import ALICE, BOB, CAROL, headers


async def create_channel(client, wallet=ALICE):
    response = await client.post("/api/channels", json={
        "name": "Crypto raffles",
        "description": "Weekly prize draws",
    }, headers=headers(wallet))
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def test_subscribe_is_idempotent(client, users):
    channel = await create_channel(client)

    first = await client.post(f"/api/channels/{channel['id']}/subscribe", headers=headers(BOB))
    second = await client.post(f"/api/channels/{channel['id']}/subscribe", headers=headers(BOB))

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["data"]["subscriber_count"] == 1


async def test_double_unsubscribe_does_not_error(client, users):
    channel = await create_channel(client)
    await client.post(f"/api/channels/{channel['id']}/subscribe", headers=headers(BOB))
    await client.post(f"/api/channels/{channel['id']}/subscribe", headers=headers(CAROL))

    first = await client.delete(f"/api/channels/{channel['id']}/subscribe", headers=headers(BOB))
    second = await client.delete(f"/api/channels/{channel['id']}/subscribe", headers=headers(BOB))

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["data"]["subscriber_count"] == 1
    assert second.json()["data"]["subscriber_count"] == 1


async def test_unsubscribe_without_subscription(client, users):
    channel = await create_channel(client)

    response = await client.delete(f"/api/channels/{channel['id']}/subscribe", headers=headers(CAROL))

    assert response.status_code == 200
    assert response.json()["data"]["subscriber_count"] == 0


async def test_channel_listing_and_lookup(client, users):
    channel = await create_channel(client)

    listing = await client.get("/api/channels")
    assert [c["id"] for c in listing.json()["data"]] == [channel["id"]]

    missing = await client.get("/api/channels/999")
    assert missing.status_code == 404


async def test_subscribe_to_missing_channel(client, users):
    response = await client.post("/api/channels/999/subscribe", headers=headers(BOB))
    assert response.status_code == 404
