"""End-to-end polled deposit flow: engine, poller and registry together."""

import asyncio

import httpx
import pytest

from chainflow.contracts import DepositStatus, StepKind, WorkflowStatus
from chainflow.engine import WorkflowEngine
from chainflow.errors import InvalidTransition, WorkflowBusy
from chainflow.invokers import InMemoryInvoker
from chainflow.persistence import InMemoryDepositRegistry
from chainflow.poller import CrossChainStatusPoller
from chainflow.status import InMemoryStatusSource, StacksApiStatusSource

ACCOUNT = "SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7"


async def _until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


def _setup(source, config, max_attempts=5):
    invoker = InMemoryInvoker()
    invoker.respond("quote-deposit-fee", 2_000)
    registry = InMemoryDepositRegistry()
    poller = CrossChainStatusPoller(
        source, interval=0, max_attempts=max_attempts, mint_grace_period=0
    )
    engine = WorkflowEngine(invoker, registry=registry, poller=poller, config=config)
    return invoker, registry, poller, engine


@pytest.mark.asyncio
async def test_deposit_confirms_then_mints(fast_config):
    source = InMemoryStatusSource(default=["pending", "pending", "success"])
    invoker, registry, poller, engine = _setup(source, fast_config)

    instance = await engine.start("stacks_deposit", "0.5", {"account": ACCOUNT})
    assert instance.status is WorkflowStatus.AWAITING_ACTION
    assert invoker.submitted(StepKind.PERMISSION) == []

    action = invoker.submitted(StepKind.ACTION)[0]
    assert action.target == "brick-vault-gateway"
    assert action.method == "deposit-sbtc"
    assert action.args["amount"] == 500_000
    assert action.value == 2_000

    await engine.wait(instance.id, timeout=1)
    assert instance.status is WorkflowStatus.IDLE
    assert WorkflowStatus.CONFIRMED in instance.history

    record = await registry.get_deposit(instance.deposit_id)
    assert record.workflow_id == instance.id
    assert record.external_tx_ref.startswith("0x")
    assert record.attempts == 3
    assert await poller.wait_minted(record.external_tx_ref) is DepositStatus.MINTED
    assert record.status is DepositStatus.MINTED
    assert record.requested_amount.value == 500_000
    await engine.aclose()


@pytest.mark.asyncio
async def test_timeout_leaves_deposit_pending_until_resumed(fast_config):
    source = InMemoryStatusSource(default=["pending"])
    invoker, registry, poller, engine = _setup(source, fast_config, max_attempts=2)

    instance = await engine.start("stacks_deposit", "1", {"account": ACCOUNT})
    await _until(lambda: len(source.calls) == 2)
    await asyncio.sleep(0.01)

    assert instance.status is WorkflowStatus.AWAITING_ACTION
    record = await registry.get_deposit(instance.deposit_id)
    assert record.status is DepositStatus.PENDING
    assert record.attempts == 2
    with pytest.raises(WorkflowBusy):
        await engine.start("stacks_deposit", "1", {"account": ACCOUNT})

    source.script(record.external_tx_ref, ["success"])
    task = await engine.resume(instance.id)
    outcome = await task
    assert outcome.status is DepositStatus.CONFIRMED
    await engine.wait(instance.id, timeout=1)

    assert instance.status is WorkflowStatus.IDLE
    assert record.attempts == 1
    with pytest.raises(InvalidTransition):
        await engine.resume(instance.id)
    await engine.aclose()


@pytest.mark.asyncio
async def test_remote_failure_fails_workflow(fast_config):
    source = InMemoryStatusSource(default=["pending", "abort_by_response"])
    invoker, registry, poller, engine = _setup(source, fast_config)

    instance = await engine.start("stacks_deposit", "0.25", {"account": ACCOUNT})
    await engine.wait(instance.id, timeout=1)

    assert instance.status is WorkflowStatus.FAILED
    assert instance.last_error.code == "execution_failed"
    assert instance.last_error.step is StepKind.ACTION
    record = await registry.get_deposit(instance.deposit_id)
    assert record.status is DepositStatus.FAILED
    assert await registry.pending_deposits() == []
    await engine.aclose()


class _UnavailableRegistry(InMemoryDepositRegistry):
    async def update_status(self, deposit_id, status, attempts=None):
        raise ConnectionError("registry unavailable")


@pytest.mark.asyncio
async def test_polling_crash_fails_workflow_and_frees_slot(fast_config):
    source = InMemoryStatusSource(default=["pending", "success"])
    invoker = InMemoryInvoker()
    invoker.respond("quote-deposit-fee", 2_000)
    poller = CrossChainStatusPoller(source, interval=0, mint_grace_period=0)
    engine = WorkflowEngine(
        invoker, registry=_UnavailableRegistry(), poller=poller, config=fast_config
    )

    instance = await engine.start("stacks_deposit", "1", {"account": ACCOUNT})
    await engine.wait(instance.id, timeout=1)

    assert instance.status is WorkflowStatus.FAILED
    assert instance.last_error.step is StepKind.ACTION
    assert "registry unavailable" in instance.last_error.message
    assert instance.action_handle is None
    assert engine.live("stacks_deposit") is None
    await engine.aclose()


@pytest.mark.asyncio
async def test_missing_fee_quote_uses_fallback(fast_config):
    source = InMemoryStatusSource(default=["success"])
    invoker = InMemoryInvoker()
    poller = CrossChainStatusPoller(source, interval=0, mint_grace_period=0)
    engine = WorkflowEngine(
        invoker, registry=InMemoryDepositRegistry(), poller=poller, config=fast_config
    )

    instance = await engine.start("stacks_deposit", "0.1", {"account": ACCOUNT})
    await engine.wait(instance.id, timeout=1)

    assert instance.fee_quote.is_fallback
    assert invoker.submitted(StepKind.ACTION)[0].value == 1_000_000_000_000_000
    assert instance.status is WorkflowStatus.IDLE
    await engine.aclose()


@pytest.mark.asyncio
async def test_deposit_tracked_through_stacks_api(fast_config):
    statuses = iter(["pending", "success"])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"tx_status": next(statuses, "success")})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    source = StacksApiStatusSource(base_url="http://stacks-node:3999", client=client)
    invoker, registry, poller, engine = _setup(source, fast_config)

    instance = await engine.start("stacks_deposit", "2", {"account": ACCOUNT})
    await engine.wait(instance.id, timeout=1)

    record = await registry.get_deposit(instance.deposit_id)
    assert instance.status is WorkflowStatus.IDLE
    assert record.attempts == 2
    await engine.aclose()
    await client.aclose()
