import itertools
import time
from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from duxxan.config import DEFAULT_CONTRACT_ADDRESS, Settings, utcnow
from duxxan.container import build_container
from duxxan.main import create_app
from duxxan.models import Raffle, Ticket
from duxxan.services.blockchain import to_base_units

CONTRACT = DEFAULT_CONTRACT_ADDRESS.lower()

ALICE = "0x" + "a" * 40
BOB = "0x" + "b" * 40
CAROL = "0x" + "c" * 40
ADMIN = "0x" + "d" * 40


def tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


def headers(wallet: str) -> dict:
    return {"x-wallet-address": wallet}


class FakeClock:
    def __init__(self):
        self.now = utcnow().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeChain:
    """In-memory stand-in for the BSC JSON-RPC endpoint"""

    def __init__(self):
        self.transactions = {}
        self.receipts = {}
        self.blocks = {}
        self.calls = []
        self.error = None
        self._blocks = itertools.count(100)

    def add_payment(self, tx: str, sender: str, amount, to: str = CONTRACT,
                    status: int = 1, age_seconds: int = 0):
        block_number = hex(next(self._blocks))
        self.transactions[tx] = {
            "hash": tx,
            "from": sender,
            "to": to,
            "value": hex(to_base_units(Decimal(amount))),
            "blockNumber": block_number,
        }
        self.receipts[tx] = {"status": hex(status), "blockNumber": block_number}
        self.blocks[block_number] = {"timestamp": hex(int(time.time()) - age_seconds)}

    async def _call(self, method, key, table):
        self.calls.append(method)
        if self.error is not None:
            raise self.error
        return table.get(key)

    async def get_transaction(self, tx):
        return await self._call("eth_getTransactionByHash", tx, self.transactions)

    async def get_transaction_receipt(self, tx):
        return await self._call("eth_getTransactionReceipt", tx, self.receipts)

    async def get_block(self, block_number):
        return await self._call("eth_getBlockByNumber", block_number, self.blocks)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        log_level="WARNING",
        database_url=None,
        admin_wallets=[ADMIN],
    )


@pytest.fixture
async def container(settings, chain, clock):
    container = build_container(settings, chain=chain, clock=clock)
    await container.database.create_all()
    yield container
    await container.queue.stop()
    await container.database.dispose()


@pytest.fixture
def app(container):
    return create_app(container=container)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def register(client, wallet: str, username: str, organization_type: str = "individual",
                   country: str = None) -> dict:
    body = {
        "wallet_address": wallet,
        "username": username,
        "organization_type": organization_type,
    }
    if country is not None:
        body["country"] = country
    response = await client.post("/api/users", json=body)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.fixture
async def users(client):
    return {
        "alice": await register(client, ALICE, "alice"),
        "bob": await register(client, BOB, "bob"),
        "carol": await register(client, CAROL, "carol"),
        "admin": await register(client, ADMIN, "admin"),
    }


async def insert_raffle(container, creator_id: int, end_date, max_tickets: int = 100,
                        ticket_price: str = "10", entries=()) -> int:
    """Create a raffle and its ledger rows directly; entries are (user_id, quantity)"""
    async with container.database.session() as db:
        raffle = Raffle(
            creator_id=creator_id,
            title="Test raffle",
            description="A prize",
            prize_value=Decimal("500"),
            ticket_price=Decimal(ticket_price),
            max_tickets=max_tickets,
            tickets_sold=sum(q for _, q in entries),
            end_date=end_date,
            created_by_admin=True,
        )
        db.add(raffle)
        await db.flush()
        for user_id, quantity in entries:
            db.add(Ticket(
                raffle_id=raffle.id,
                user_id=user_id,
                quantity=quantity,
                total_amount=Decimal(ticket_price) * quantity,
            ))
        await db.commit()
        return raffle.id


async def load_raffle(container, raffle_id: int) -> Raffle:
    async with container.database.session() as db:
        return await db.get(Raffle, raffle_id)
