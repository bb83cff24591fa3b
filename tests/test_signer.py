import asyncio
from types import SimpleNamespace

import pytest

from chain.signer import FALLBACK_GAS, Signer, account_lock

ADDRESS = "0x" + "11" * 20


async def _value(v):
    return v


class FakeEth:
    def __init__(self, *, eip1559=True, estimate_error=None):
        self.eip1559 = eip1559
        self.estimate_error = estimate_error
        self.sent = []

    @property
    def max_priority_fee(self):
        return _value(10)

    @property
    def gas_price(self):
        return _value(50)

    @property
    def chain_id(self):
        return _value(1155)

    async def get_block(self, ident):
        if not self.eip1559:
            raise KeyError("baseFeePerGas")
        return {"baseFeePerGas": 100}

    async def get_transaction_count(self, address, block):
        assert block == "pending"
        # yield so concurrent senders interleave here if unserialized
        await asyncio.sleep(0)
        return len(self.sent)

    async def estimate_gas(self, tx):
        if self.estimate_error:
            raise self.estimate_error
        return 42_000

    async def send_raw_transaction(self, raw):
        await asyncio.sleep(0)
        self.sent.append(raw)
        return bytes([len(self.sent)]) * 32

    async def get_balance(self, address):
        return 7


class FakeAccount:
    address = ADDRESS

    def __init__(self):
        self.signed = []

    def sign_transaction(self, tx):
        self.signed.append(dict(tx))
        return SimpleNamespace(raw_transaction=b"raw-%d" % tx["nonce"])


def _signer(**eth_kwargs):
    eth = FakeEth(**eth_kwargs)
    account = FakeAccount()
    return Signer(SimpleNamespace(eth=eth), account), eth, account


@pytest.mark.asyncio
async def test_fills_eip1559_fees_and_chain_fields():
    signer, eth, account = _signer()

    tx_hash = await signer.send_transaction({"to": "0x" + "22" * 20, "value": 5, "gas": 500_000})

    tx = account.signed[0]
    assert tx["type"] == 2
    assert tx["maxPriorityFeePerGas"] == 15
    assert tx["maxFeePerGas"] == 115
    assert tx["chainId"] == 1155
    assert tx["nonce"] == 0
    assert tx["gas"] == 500_000
    assert "from" not in tx
    assert "gasPrice" not in tx
    assert tx_hash == "0x" + "01" * 32


@pytest.mark.asyncio
async def test_legacy_gas_price_fallback():
    signer, eth, account = _signer(eip1559=False)

    await signer.send_transaction({"to": ADDRESS, "value": 0, "maxFeePerGas": 1})

    tx = account.signed[0]
    assert tx["gasPrice"] == 60
    assert "maxFeePerGas" not in tx
    assert "type" not in tx
    assert tx["gas"] == 42_000


@pytest.mark.asyncio
async def test_gas_estimate_failure_uses_fallback():
    signer, eth, account = _signer(estimate_error=ValueError("execution reverted"))

    await signer.send_transaction({"to": ADDRESS, "value": 0})

    assert account.signed[0]["gas"] == FALLBACK_GAS


@pytest.mark.asyncio
async def test_concurrent_sends_get_distinct_nonces():
    signer, eth, account = _signer()

    await asyncio.gather(*(
        signer.send_transaction({"to": ADDRESS, "value": i, "gas": 21_000}) for i in range(4)
    ))

    assert sorted(tx["nonce"] for tx in account.signed) == [0, 1, 2, 3]
    assert len(eth.sent) == 4


@pytest.mark.asyncio
async def test_lock_is_shared_per_address():
    assert account_lock("0x" + "AB" * 20) is account_lock("0x" + "ab" * 20)
    assert account_lock(ADDRESS) is not account_lock("0x" + "33" * 20)


@pytest.mark.asyncio
async def test_balance():
    signer, _, _ = _signer()
    assert await signer.balance() == 7
    assert signer.address == ADDRESS


def test_from_key_requires_key():
    with pytest.raises(RuntimeError):
        Signer.from_key(SimpleNamespace(eth=FakeEth()), "")
