"""chainflow: multi-step on-chain transaction workflows."""

from .amounts import Amount
from .contracts import (
    DepositRecord,
    DepositStatus,
    FeeQuote,
    FeeSource,
    StepKind,
    WorkflowInstance,
    WorkflowKind,
    WorkflowParams,
    WorkflowStatus,
)
from .engine import WorkflowEngine
from .fees import FeeQuotationResolver
from .guard import should_request_permission
from .invokers import get_invoker
from .persistence import get_registry
from .poller import CrossChainStatusPoller
from .status import get_status_source
from .watcher import ConfirmationWatcher

__version__ = "0.1.0"
__all__ = [
    "Amount",
    "ConfirmationWatcher",
    "CrossChainStatusPoller",
    "DepositRecord",
    "DepositStatus",
    "FeeQuotationResolver",
    "FeeQuote",
    "FeeSource",
    "StepKind",
    "WorkflowEngine",
    "WorkflowInstance",
    "WorkflowKind",
    "WorkflowParams",
    "WorkflowStatus",
    "get_invoker",
    "get_registry",
    "get_status_source",
    "should_request_permission",
]
