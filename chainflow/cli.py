"""Command line interface for running chainflow workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Tuple

import typer
import yaml

from chainflow import Amount, WorkflowEngine
from chainflow.config import ChainflowConfig, load_config
from chainflow.contracts import DepositRecord, DepositStatus, StepKind, WorkflowInstance
from chainflow.definitions import DEFINITIONS, get_definition
from chainflow.errors import ChainflowError, QuoteUnavailable
from chainflow.invokers import InMemoryInvoker
from chainflow.persistence import InMemoryDepositRegistry
from chainflow.poller import CrossChainStatusPoller
from chainflow.status import InMemoryStatusSource, get_status_source

app = typer.Typer(help="CLI for chainflow transaction workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for running workflows")
deposit_app = typer.Typer(help="Commands for tracking cross-chain deposits")
config_app = typer.Typer(help="Commands for inspecting configuration")

app.add_typer(workflow_app, name="workflow")
app.add_typer(deposit_app, name="deposit")
app.add_typer(config_app, name="config")

SIMULATED_QUOTE = 250_000_000_000_000


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level for chainflow"),
) -> None:
    """chainflow CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@workflow_app.command("kinds")
def workflow_kinds() -> None:
    """List the workflow kinds and the steps each one runs."""
    for kind, definition in DEFINITIONS.items():
        permission = (
            f"{definition.permission.method} {definition.permission.token} -> {definition.permission.spender}"
            if definition.permission
            else "none"
        )
        typer.echo(f"{kind.value} ({definition.asset})")
        typer.echo(f"  Permission: {permission}")
        typer.echo(f"  Action: {definition.action.method} on {definition.action.target}")
        if definition.needs_fee_quote:
            typer.echo(f"  Fee quote: {definition.fee_quote_method}")
        typer.echo(f"  Confirmation: {definition.confirmation}")


async def _simulate(
    config: ChainflowConfig,
    kind: str,
    amount: str,
    account: str,
    allowance: Optional[str],
    quote_fails: bool,
    fail_step: Optional[StepKind],
    reject: bool,
    timeout: float,
) -> Tuple[WorkflowInstance, InMemoryInvoker, List[DepositRecord]]:
    definition = get_definition(kind)
    invoker = InMemoryInvoker(
        auto_confirm=True,
        fail_steps={fail_step} if fail_step else None,
        reject_steps={StepKind.PERMISSION, StepKind.ACTION} if reject else None,
    )
    if allowance is not None and definition.permission is not None:
        invoker.set_allowance(
            config.address_for(definition.permission.token),
            account,
            config.address_for(definition.permission.spender),
            Amount.parse(allowance, config.decimals_for(definition.asset)).value,
        )
    if definition.needs_fee_quote:
        invoker.respond(
            definition.fee_quote_method,
            QuoteUnavailable("quote reverted") if quote_fails else {"nativeFee": SIMULATED_QUOTE},
        )

    remote = ["pending", "abort_by_response" if fail_step is StepKind.ACTION else "success"]
    poller = CrossChainStatusPoller(
        InMemoryStatusSource(default=remote),
        interval=0,
        max_attempts=config.poller.max_attempts,
        mint_grace_period=0,
    )
    registry = InMemoryDepositRegistry()
    engine = WorkflowEngine(invoker, registry=registry, poller=poller, config=config)
    try:
        instance = await engine.start(kind, amount, {"account": account})
        await engine.wait(instance.id, timeout=timeout)
        record = (
            await registry.get_deposit(instance.deposit_id) if instance.deposit_id else None
        )
        if record is not None and record.status is DepositStatus.CONFIRMED:
            await poller.wait_minted(record.external_tx_ref)
        return instance, invoker, await registry.list_deposits()
    finally:
        await engine.aclose()


@workflow_app.command("simulate")
def workflow_simulate(
    kind: str,
    amount: str,
    account: str = typer.Option("0xoperator", help="Account running the workflow"),
    allowance: Optional[str] = typer.Option(
        None, help="Existing allowance, in the asset's decimal units"
    ),
    quote_fails: bool = typer.Option(False, help="Make the fee quote call fail"),
    fail_step: Optional[StepKind] = typer.Option(
        None, help="Finalize this step as failed"
    ),
    reject: bool = typer.Option(False, help="Decline every signature request"),
    timeout: float = typer.Option(10.0, help="Seconds to wait for completion"),
) -> None:
    """
    Run one workflow against the in-memory chain and print its lifecycle.

    Every submitted operation confirms immediately unless --fail-step or
    --reject says otherwise.

    Example:
        chainflow workflow simulate bridge_send 100
        chainflow workflow simulate vault_deposit 2.5 --allowance 10
        chainflow workflow simulate stacks_deposit 0.5 --quote-fails
    """
    config = load_config()
    try:
        instance, invoker, deposits = asyncio.run(
            _simulate(
                config, kind, amount, account, allowance, quote_fails, fail_step, reject, timeout
            )
        )
    except (ChainflowError, ValueError) as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except asyncio.TimeoutError:
        typer.secho(f"Workflow did not finish within {timeout}s", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"Workflow {instance.id} ({instance.kind.value}): {instance.status.value}")
    typer.echo("History: " + " -> ".join(status.value for status in instance.history))
    typer.echo(f"Permission submissions: {len(invoker.submitted(StepKind.PERMISSION))}")
    typer.echo(f"Action submissions: {len(invoker.submitted(StepKind.ACTION))}")
    if instance.fee_quote is not None:
        typer.echo(f"Fee: {instance.fee_quote.amount} ({instance.fee_quote.source.value})")
    for record in deposits:
        typer.echo(f"Deposit {record.id}: {record.status.value} ({record.external_tx_ref})")
    if instance.last_error is not None:
        typer.secho(
            f"Error: {instance.last_error.code}: {instance.last_error.message}",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@deposit_app.command("track")
def deposit_track(
    txid: str,
    interval: Optional[float] = typer.Option(None, help="Seconds between polls"),
    max_attempts: Optional[int] = typer.Option(None, help="Maximum status queries"),
) -> None:
    """
    Poll the configured status source until a transaction is final.

    Exits 0 when the transaction confirmed, 1 when it failed and 2 when it
    is still pending after the last attempt.

    Example:
        chainflow deposit track 0x3f2a... --interval 3 --max-attempts 30
    """
    config = load_config()

    async def _track() -> DepositStatus:
        source = get_status_source(config=config)
        poller = CrossChainStatusPoller(
            source,
            interval=config.poller.interval,
            max_attempts=config.poller.max_attempts,
            mint_grace_period=config.poller.mint_grace_period,
        )

        def _echo(status: DepositStatus, attempt: int) -> None:
            typer.echo(f"Attempt {attempt}: {status.value}")

        try:
            outcome = await poller.poll_until_terminal(
                txid, interval=interval, max_attempts=max_attempts, on_status=_echo
            )
            if outcome.status is DepositStatus.CONFIRMED:
                await poller.wait_minted(txid)
            return outcome.status
        finally:
            await poller.aclose()
            await source.aclose()

    status = asyncio.run(_track())
    if status is DepositStatus.FAILED:
        raise typer.Exit(code=1)
    if status is DepositStatus.PENDING:
        typer.echo("Still pending; run the command again to keep tracking")
        raise typer.Exit(code=2)


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration as YAML."""
    config = load_config()
    typer.echo(yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
