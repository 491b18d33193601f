"""Per-kind step definitions.

Each workflow kind is described as data: which token permission (if any) has
to be granted first, which operation performs the action, whether a bridge
fee quote is needed and how the action's finality is observed. The engine
runs every kind through the same transition function.
"""

from __future__ import annotations

from typing import Dict, Literal, Optional

from pydantic import BaseModel

from .contracts import WorkflowKind

APPROVE_GAS_LIMIT = 100_000


class PermissionSpec(BaseModel):
    """Token approval granted to ``spender`` before the action step."""

    token: str
    spender: str
    method: str = "approve"
    allowance_method: str = "allowance"
    gas_limit: Optional[int] = APPROVE_GAS_LIMIT


class ActionSpec(BaseModel):
    """The primary operation of a workflow."""

    target: str
    method: str
    gas_limit: Optional[int] = None


class WorkflowDefinition(BaseModel):
    kind: WorkflowKind
    asset: str
    action: ActionSpec
    permission: Optional[PermissionSpec] = None
    fee_quote_method: Optional[str] = None
    bridge_route: Optional[Literal["outbound", "inbound"]] = None
    confirmation: Literal["watcher", "poller"] = "watcher"

    @property
    def needs_fee_quote(self) -> bool:
        return self.fee_quote_method is not None

    @property
    def is_bridging(self) -> bool:
        return self.bridge_route is not None


DEFINITIONS: Dict[WorkflowKind, WorkflowDefinition] = {
    WorkflowKind.BRIDGE_SEND: WorkflowDefinition(
        kind=WorkflowKind.BRIDGE_SEND,
        asset="USDC",
        permission=PermissionSpec(token="MockUSDC", spender="ShareOFTAdapter"),
        action=ActionSpec(
            target="ShareOFTAdapter", method="send", gas_limit=10_000_000
        ),
        fee_quote_method="quoteSend",
        bridge_route="outbound",
    ),
    WorkflowKind.BRIDGE_REDEEM: WorkflowDefinition(
        kind=WorkflowKind.BRIDGE_REDEEM,
        asset="OFTUSDC",
        action=ActionSpec(target="OFTUSDC", method="send", gas_limit=10_000_000),
        fee_quote_method="quoteSend",
        bridge_route="inbound",
    ),
    WorkflowKind.VAULT_DEPOSIT: WorkflowDefinition(
        kind=WorkflowKind.VAULT_DEPOSIT,
        asset="OFTUSDC",
        permission=PermissionSpec(token="OFTUSDC", spender="PropertyVault"),
        action=ActionSpec(target="PropertyVault", method="deposit", gas_limit=500_000),
    ),
    WorkflowKind.RENT_HARVEST: WorkflowDefinition(
        kind=WorkflowKind.RENT_HARVEST,
        asset="OFTUSDC",
        permission=PermissionSpec(token="OFTUSDC", spender="PropertyVault"),
        action=ActionSpec(
            target="PropertyVault", method="harvestRent", gas_limit=100_000
        ),
    ),
    WorkflowKind.LIQUIDATION_DEPOSIT: WorkflowDefinition(
        kind=WorkflowKind.LIQUIDATION_DEPOSIT,
        asset="OFTUSDC",
        permission=PermissionSpec(token="OFTUSDC", spender="PropertyVault"),
        action=ActionSpec(
            target="PropertyVault",
            method="depositLiquidationProceeds",
            gas_limit=500_000,
        ),
    ),
    WorkflowKind.NAV_UPDATE: WorkflowDefinition(
        kind=WorkflowKind.NAV_UPDATE,
        asset="OFTUSDC",
        action=ActionSpec(target="PropertyVault", method="updateNAV", gas_limit=100_000),
    ),
    WorkflowKind.STACKS_DEPOSIT: WorkflowDefinition(
        kind=WorkflowKind.STACKS_DEPOSIT,
        asset="sBTC",
        action=ActionSpec(target="brick-vault-gateway", method="deposit-sbtc"),
        fee_quote_method="quote-deposit-fee",
        bridge_route="outbound",
        confirmation="poller",
    ),
}


def get_definition(kind: WorkflowKind | str) -> WorkflowDefinition:
    """Return the step definition registered for ``kind``."""
    try:
        return DEFINITIONS[WorkflowKind(kind)]
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported workflow kind: {kind}") from None


__all__ = [
    "ActionSpec",
    "DEFINITIONS",
    "PermissionSpec",
    "WorkflowDefinition",
    "get_definition",
]
