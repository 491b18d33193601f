"""In-memory invoker tests."""

import asyncio

import pytest

from chainflow.contracts import (
    ConfirmationOutcome,
    OperationRequest,
    ReadQuery,
    StepKind,
    WorkflowKind,
)
from chainflow.errors import OperatorRejected, QuoteUnavailable, SubmissionError
from chainflow.invokers import InMemoryInvoker


def _approve(amount=100):
    return OperationRequest(
        kind=WorkflowKind.VAULT_DEPOSIT,
        step=StepKind.PERMISSION,
        target="OFTUSDC",
        method="approve",
        args={"owner": "0xme", "spender": "PropertyVault", "amount": amount},
    )


def _allowance_query():
    return ReadQuery(
        target="OFTUSDC",
        method="allowance",
        args={"owner": "0xme", "spender": "PropertyVault"},
    )


@pytest.mark.asyncio
async def test_confirmed_approval_updates_allowance():
    invoker = InMemoryInvoker()
    assert await invoker.query(_allowance_query()) == 0

    handle = await invoker.submit(_approve(250))
    assert handle.tx_ref.startswith("0x")
    assert invoker.pending_handles() == [handle.id]

    invoker.confirm(handle)
    assert await invoker.await_confirmation(handle) is ConfirmationOutcome.CONFIRMED
    assert await invoker.query(_allowance_query()) == 250
    assert invoker.pending_handles() == []


@pytest.mark.asyncio
async def test_failed_operation_records_reason():
    invoker = InMemoryInvoker()
    handle = await invoker.submit(_approve())

    invoker.fail(handle.id, "insufficient balance")
    assert await invoker.await_confirmation(handle) is ConfirmationOutcome.FAILED
    assert invoker.failure_reason(handle) == "insufficient balance"
    assert invoker.allowance("OFTUSDC", "0xme", "PropertyVault") == 0


@pytest.mark.asyncio
async def test_scripted_steps():
    rejecting = InMemoryInvoker(reject_steps={StepKind.PERMISSION})
    with pytest.raises(OperatorRejected):
        await rejecting.submit(_approve())
    assert rejecting.submissions == []

    erroring = InMemoryInvoker(error_steps={StepKind.PERMISSION})
    with pytest.raises(SubmissionError):
        await erroring.submit(_approve())

    failing = InMemoryInvoker(fail_steps={StepKind.PERMISSION})
    handle = await failing.submit(_approve())
    assert await failing.await_confirmation(handle) is ConfirmationOutcome.FAILED


@pytest.mark.asyncio
async def test_auto_confirm():
    invoker = InMemoryInvoker(auto_confirm=True)
    handle = await invoker.submit(_approve())
    assert await invoker.await_confirmation(handle) is ConfirmationOutcome.CONFIRMED
    assert len(invoker.submitted(StepKind.PERMISSION)) == 1
    assert invoker.submitted(StepKind.ACTION) == []


@pytest.mark.asyncio
async def test_query_responders():
    invoker = InMemoryInvoker()
    quote = ReadQuery(target="ShareOFTAdapter", method="quoteSend")

    with pytest.raises(SubmissionError):
        await invoker.query(quote)

    invoker.respond("quoteSend", {"nativeFee": 5})
    assert await invoker.query(quote) == {"nativeFee": 5}

    invoker.respond("quoteSend", QuoteUnavailable("reverted"))
    with pytest.raises(QuoteUnavailable):
        await invoker.query(quote)

    invoker.respond("quoteSend", lambda q: q.target)
    assert await invoker.query(quote) == "ShareOFTAdapter"

    invoker.respond("allowance", 7)
    assert await invoker.query(_allowance_query()) == 7
    assert len(invoker.queries) == 5


@pytest.mark.asyncio
async def test_slow_responder_times_out():
    invoker = InMemoryInvoker()

    async def slow(query):
        await asyncio.sleep(1)
        return 1

    invoker.respond("quoteSend", slow)
    with pytest.raises(asyncio.TimeoutError):
        await invoker.query(ReadQuery(target="x", method="quoteSend"), timeout=0.01)
