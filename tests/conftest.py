import pytest

from orderscan.domain.errors import RpcError
from orderscan.domain.models import EventSignatures, RawLog
from orderscan.domain.value_types import Address, Topic0, TxHash

TAKE = Topic0("0x" + "aa" * 32)
CLEAR = Topic0("0x" + "bb" * 32)
CONTRACT = "0x0ea6d458488d1cf51695e1d6e4744e6fb715d37c"


def tx(n: int) -> TxHash:
    return TxHash("0x" + f"{n:064x}")


def sender(n: int) -> str:
    return "0x" + f"{n:040x}"


def raw_log(block: int, txn: int, topic0: str = TAKE, log_index: int = 0, ts: int | None = None) -> RawLog:
    return RawLog(
        address=Address(CONTRACT),
        topics=(Topic0(topic0),),
        block_number=block,
        tx_hash=tx(txn),
        log_index=log_index,
        block_timestamp=ts,
    )


class FakeRPC:
    """In-memory RPC: logs are filtered like eth_getLogs; failures are queued per range."""

    def __init__(self, logs=(), blocks=None, senders=None, failures=None, head=0):
        self.logs = list(logs)
        self.blocks = dict(blocks or {})
        self.senders = dict(senders or {})
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.head = head
        self.calls = []

    async def get_logs(self, address, topic0s, from_block, to_block):
        self.calls.append(("get_logs", from_block, to_block))
        queue = self.failures.get((from_block, to_block))
        if queue:
            raise queue.pop(0)
        return [l for l in self.logs
                if from_block <= l.block_number <= to_block and l.topics and l.topics[0] in topic0s]

    async def latest_block(self):
        return self.head

    async def block_timestamp(self, block_number):
        self.calls.append(("block", block_number))
        value = self.blocks.get(block_number)
        if isinstance(value, Exception):
            raise value
        return value

    async def transaction_sender(self, tx_hash):
        self.calls.append(("tx", tx_hash))
        value = self.senders.get(tx_hash)
        if isinstance(value, Exception):
            raise value
        return value

    def count(self, kind):
        return sum(1 for c in self.calls if c[0] == kind)


@pytest.fixture
def signatures():
    return EventSignatures(take_order=TAKE, clear=CLEAR)


@pytest.fixture
def transient_error():
    return RpcError("eth_getLogs transport error: ReadTimeout", retryable=True)
