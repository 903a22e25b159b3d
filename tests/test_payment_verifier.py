from decimal import Decimal

from conftest import ALICE, BOB, FakeChain, tx_hash

from duxxan.config import DEFAULT_CONTRACT_ADDRESS
from duxxan.exceptions import ChainRPCError
from duxxan.services.blockchain import PaymentVerifier, to_base_units
from duxxan.utils.circuit_breaker import OPEN, CircuitBreaker


def make_verifier(chain, threshold=5):
    # mixed-case address: comparison must ignore case
    breaker = CircuitBreaker("test", failure_threshold=threshold)
    return PaymentVerifier(chain, DEFAULT_CONTRACT_ADDRESS, breaker)


def test_to_base_units_uses_18_decimals():
    assert to_base_units(Decimal("25")) == 25 * 10 ** 18
    assert to_base_units(Decimal("0.5")) == 5 * 10 ** 17


async def test_valid_payment_verifies():
    chain = FakeChain()
    chain.add_payment(tx_hash(1), ALICE, "25")

    assert await make_verifier(chain).verify_payment(tx_hash(1), ALICE, Decimal("25"))


async def test_overpayment_is_accepted():
    chain = FakeChain()
    chain.add_payment(tx_hash(1), ALICE, "30")
    assert await make_verifier(chain).verify_payment(tx_hash(1), ALICE, Decimal("25"))


async def test_wrong_recipient_rejected():
    chain = FakeChain()
    chain.add_payment(tx_hash(1), ALICE, "25", to="0x" + "1" * 40)
    assert not await make_verifier(chain).verify_payment(tx_hash(1), ALICE, Decimal("25"))


async def test_wrong_sender_rejected():
    chain = FakeChain()
    chain.add_payment(tx_hash(1), BOB, "25")
    assert not await make_verifier(chain).verify_payment(tx_hash(1), ALICE, Decimal("25"))


async def test_failed_receipt_rejected():
    chain = FakeChain()
    chain.add_payment(tx_hash(1), ALICE, "25", status=0)
    assert not await make_verifier(chain).verify_payment(tx_hash(1), ALICE, Decimal("25"))


async def test_underpayment_rejected():
    chain = FakeChain()
    chain.add_payment(tx_hash(1), ALICE, "24.999999")
    assert not await make_verifier(chain).verify_payment(tx_hash(1), ALICE, Decimal("25"))


async def test_unknown_transaction_rejected():
    assert not await make_verifier(FakeChain()).verify_payment(tx_hash(9), ALICE, Decimal("25"))


async def test_rpc_error_fails_closed():
    chain = FakeChain()
    chain.add_payment(tx_hash(1), ALICE, "25")
    chain.error = ChainRPCError("node unavailable")
    assert not await make_verifier(chain).verify_payment(tx_hash(1), ALICE, Decimal("25"))


async def test_malformed_hash_never_reaches_rpc():
    chain = FakeChain()
    assert not await make_verifier(chain).verify_payment("0x1234", ALICE, Decimal("25"))
    assert chain.calls == []


async def test_old_payment_rejected_when_age_limited():
    chain = FakeChain()
    chain.add_payment(tx_hash(1), ALICE, "25", age_seconds=2 * 60 * 60)
    verifier = make_verifier(chain)

    assert not await verifier.verify_payment(tx_hash(1), ALICE, Decimal("25"), max_age_seconds=3600)
    assert await verifier.verify_payment(tx_hash(1), ALICE, Decimal("25"), max_age_seconds=24 * 3600)


async def test_verified_payment_is_cached():
    chain = FakeChain()
    chain.add_payment(tx_hash(1), ALICE, "25")
    verifier = make_verifier(chain)

    assert await verifier.verify_payment(tx_hash(1), ALICE, Decimal("25"))
    calls = len(chain.calls)
    assert await verifier.verify_payment(tx_hash(1), ALICE, Decimal("25"))
    assert len(chain.calls) == calls


async def test_open_breaker_short_circuits_rpc():
    chain = FakeChain()
    chain.add_payment(tx_hash(1), ALICE, "25")
    chain.error = ChainRPCError("timeout")
    verifier = make_verifier(chain, threshold=2)

    assert not await verifier.verify_payment(tx_hash(1), ALICE, Decimal("25"))
    assert not await verifier.verify_payment(tx_hash(1), ALICE, Decimal("25"))
    assert verifier.breaker.state == OPEN

    calls = len(chain.calls)
    chain.error = None
    assert not await verifier.verify_payment(tx_hash(1), ALICE, Decimal("25"))
    assert len(chain.calls) == calls
