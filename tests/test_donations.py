from decimal import Decimal

from conftest import ALICE, BOB, CAROL, headers, register

from duxxan.services.donation import commission_terms, split_contribution

ORG = "0x" + "f" * 40


def test_commission_terms():
    assert commission_terms("individual", False) == (Decimal("10.00"), Decimal("0"))
    assert commission_terms("individual", True) == (Decimal("10.00"), Decimal("0"))
    assert commission_terms("foundation", False) == (Decimal("2.00"), Decimal("0"))
    assert commission_terms("association", True) == (Decimal("2.00"), Decimal("100"))


def test_split_contribution():
    commission, net = split_contribution(Decimal("100"), Decimal("10"))
    assert commission == Decimal("10")
    assert net == Decimal("90")


async def test_individual_donation_takes_ten_percent(client, users):
    created = await client.post("/api/donations", json={
        "title": "Medical bills",
        "description": "Surgery for my dog",
        "goal_amount": "1000",
    }, headers=headers(ALICE))
    assert created.status_code == 201
    donation = created.json()["data"]
    assert Decimal(donation["commission_rate"]) == Decimal("10")

    response = await client.post(
        f"/api/donations/{donation['id']}/contribute",
        json={"amount": "100", "donor_country": "tr"},
        headers=headers(BOB),
    )
    assert response.status_code == 201
    contribution = response.json()["data"]
    assert Decimal(contribution["commission_amount"]) == Decimal("10")
    assert Decimal(contribution["net_amount"]) == Decimal("90")
    assert contribution["donor_country"] == "TR"

    await client.post(f"/api/donations/{donation['id']}/contribute", json={"amount": "50"}, headers=headers(CAROL))

    updated = (await client.get(f"/api/donations/{donation['id']}")).json()["data"]
    assert Decimal(updated["current_amount"]) == Decimal("150")
    assert updated["donor_count"] == 2
    assert Decimal(updated["total_commission_collected"]) == Decimal("15")

    contributions = (await client.get(f"/api/donations/{donation['id']}/contributions")).json()["data"]
    assert len(contributions) == 2


async def test_organization_unlimited_campaign_owes_startup_fee(client, users):
    await register(client, ORG, "redcrescent", organization_type="foundation")

    response = await client.post("/api/donations", json={
        "title": "Earthquake relief",
        "description": "Ongoing support",
        "goal_amount": "50000",
        "is_unlimited": True,
    }, headers=headers(ORG))

    assert response.status_code == 201
    donation = response.json()["data"]
    assert Decimal(donation["commission_rate"]) == Decimal("2")
    assert Decimal(donation["startup_fee"]) == Decimal("100")


async def test_contribution_amount_must_be_positive(client, users):
    created = await client.post("/api/donations", json={
        "title": "x", "description": "y", "goal_amount": "10",
    }, headers=headers(ALICE))

    response = await client.post(
        f"/api/donations/{created.json()['data']['id']}/contribute",
        json={"amount": "0"},
        headers=headers(BOB),
    )
    assert response.status_code == 400


async def test_donation_listing(client, users):
    await client.post("/api/donations", json={
        "title": "x", "description": "y", "goal_amount": "10",
    }, headers=headers(ALICE))

    listing = await client.get("/api/donations?active=true")
    assert len(listing.json()["data"]) == 1
    assert (await client.get("/api/donations/999")).status_code == 404
