"""
orchestrator.py - Transaction Orchestrator (approval state machine)

Drives every state-changing action through:

    IDLE -> [APPROVING -> APPROVAL_CONFIRMED] -> SIMULATING -> READY
         -> SUBMITTING -> CONFIRMED
    any step -> FAILED

Execution order of run_transaction_flow():
1. Prepare: the action's preparer reads state and runs the calculators
2. Balance: the account must hold what the call will pull
3. Approve (token actions, allowance short only): approve amount * 1.01,
   simulated first like any write, then wait for its receipt
4. Allowance propagation: re-read the allowance; if still short wait 2s
   and re-read once more before failing with AllowanceNotPropagated
5. Simulate the exact call; a failure is decoded and blocks submission
6. Submit once (writes are never retried), await the receipt under a
   timeout, then invalidate exactly the snapshots the call affects

Concurrency:
- one flow at a time per (account, loan, action); a second one fails with
  FlowInProgress without touching the first
- closing the stream (aclose) or cancelling the consuming task stops the
  flow at its current await; nothing keeps running in the background
- a confirmation timeout (of the approval or of the action) reports
  ConfirmationTimeout with the handle and leaves the outcome open; the flow
  key stays blocked until recheck_confirmation() resolves it or
  discard_unconfirmed() releases it
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import AsyncIterator, Dict, Optional, Set, Tuple

from .actions import (
    ActionContext, ActionKind, ActionRequest, PreparedAction, Preparer, TokenApproval,
    DEFAULT_PREPARERS,
)
from .config import EngineConfig, TokenRegistry, DEFAULT_CONFIG
from .core import (
    Address, ChainTransport, ContractCall, TxHandle,
    ActionNotAllowed, AllowanceNotPropagated, ConfirmationTimeout, FlowInProgress,
    InsufficientBalance, LendingError, SimulationFailed, TransactionReverted,
)
from .fixed_point import add_headroom
from .pricing_source import Clock, PriceOracle, system_clock
from .reader import ChainReader
from .retry import ALLOWANCE_PROPAGATION_POLICY, RetryPolicy, Sleep
from .revert_reasons import decode_simulation_error
from .snapshot_cache import SnapshotCache, allowance_key

logger = logging.getLogger(__name__)


class FlowStep(str, Enum):
    IDLE = "idle"
    APPROVING = "approving"
    APPROVAL_CONFIRMED = "approval_confirmed"
    SIMULATING = "simulating"
    READY = "ready"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


TERMINAL_STEPS = frozenset({FlowStep.CONFIRMED, FlowStep.FAILED})


@dataclass(frozen=True, slots=True)
class FlowState:
    """
    One update of a transaction flow, as published to the UI.

    tx_handle is set once something was submitted (the approval while
    APPROVING, the action itself from SUBMITTING on). On FAILED, `error`
    carries the typed cause and `message` its user-facing text.
    """
    step: FlowStep
    action: ActionKind
    message: str = ""
    tx_handle: Optional[TxHandle] = None
    error: Optional[LendingError] = None
    prepared: Optional[PreparedAction] = None

    @property
    def is_terminal(self) -> bool:
        return self.step in TERMINAL_STEPS

    @property
    def outcome_unknown(self) -> bool:
        """A timed-out confirmation: the transaction may still land."""
        return isinstance(self.error, ConfirmationTimeout)


@dataclass(frozen=True, slots=True)
class UnconfirmedTransaction:
    """
    A submitted transaction whose receipt did not arrive in time.

    is_approval marks the token approval of a flow rather than the action
    itself; confirming it only refreshes the allowance, the action still
    has to be run again.
    """
    tx_handle: TxHandle
    flow_key: Tuple
    kind: ActionKind
    prepared: PreparedAction
    invalidates: Tuple[str, ...]
    is_approval: bool = False


def _failure_message(exc: LendingError) -> str:
    if isinstance(exc, SimulationFailed):
        return exc.reason
    return str(exc) or type(exc).__name__


class TransactionOrchestrator:
    """
    Runs approve -> simulate -> submit -> confirm flows.

    Features:
    - Per-action preparers (register() to add or replace one)
    - Exact-scope snapshot invalidation after confirmed writes
    - Single-flight per (account, loan, action)
    - Timed-out transactions hold their flow key until re-checked or discarded
    - Injectable clock and sleep for deterministic tests
    """

    def __init__(
        self,
        transport: ChainTransport,
        config: EngineConfig = DEFAULT_CONFIG,
        tokens: Optional[TokenRegistry] = None,
        reader: Optional[ChainReader] = None,
        oracle: Optional[PriceOracle] = None,
        preparers: Optional[Dict[ActionKind, Preparer]] = None,
        clock: Clock = system_clock,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            transport: Read/simulate/submit capability
            config: Engine settings and contract addresses
            tokens: Known tokens (decimals are read from chain otherwise)
            reader: Shared ChainReader (built over a fresh cache if omitted)
            oracle: Price oracle (built over the reader if omitted)
            preparers: ActionKind -> preparer (DEFAULT_PREPARERS if omitted)
            clock: Unix-seconds clock used for staleness
            sleep: Awaitable sleep used for the allowance re-check
        """
        self.transport = transport
        self.config = config
        self.reader = reader or ChainReader(transport, SnapshotCache(), config, sleep=sleep)
        self.oracle = oracle or PriceOracle(
            self.reader,
            clock=clock,
            stale_threshold=config.stale_threshold_seconds,
            exchange_rate_stale_threshold=config.exchange_rate_stale_seconds,
        )
        self.context = ActionContext(
            reader=self.reader,
            oracle=self.oracle,
            config=config,
            tokens=tokens if tokens is not None else TokenRegistry(),
            clock=clock,
        )
        self.preparers: Dict[ActionKind, Preparer] = dict(DEFAULT_PREPARERS if preparers is None else preparers)
        self.sleep = sleep
        self.allowance_policy: RetryPolicy = replace(
            ALLOWANCE_PROPAGATION_POLICY,
            initial_delay=config.allowance_recheck_delay_seconds,
            max_delay=config.allowance_recheck_delay_seconds,
        )
        self._in_flight: Set[Tuple] = set()
        # flow_key -> the transaction blocking that key; at most one per key
        self._unconfirmed: Dict[Tuple, UnconfirmedTransaction] = {}

    @property
    def cache(self) -> SnapshotCache:
        return self.reader.cache

    def register(self, kind: ActionKind, preparer: Preparer) -> None:
        """Register a preparer for an action kind."""
        self.preparers[kind] = preparer

    def is_in_flight(self, request: ActionRequest) -> bool:
        return request.flow_key in self._in_flight

    def is_awaiting_confirmation(self, request: ActionRequest) -> bool:
        return request.flow_key in self._unconfirmed

    @property
    def unconfirmed(self) -> Tuple[UnconfirmedTransaction, ...]:
        return tuple(self._unconfirmed.values())

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------

    async def run_transaction_flow(self, request: ActionRequest) -> AsyncIterator[FlowState]:
        """
        Run one action, yielding a FlowState at every transition.

        The last state yielded is always terminal (CONFIRMED or FAILED)
        unless the consumer stops iterating first.

        Example:
            async for state in orchestrator.run_transaction_flow(request):
                render(state)
        """
        key = request.flow_key
        if key in self._in_flight:
            logger.warning("Rejected concurrent %s flow for %s", request.kind.value, key)
            yield FlowState(
                FlowStep.FAILED, request.kind,
                message="This action is already in progress",
                error=FlowInProgress(f"{request.kind.value} already in progress for {key}"),
            )
            return

        pending = self._unconfirmed.get(key)
        if pending is not None:
            logger.warning("Rejected %s flow for %s: %s is unconfirmed", request.kind.value, key, pending.tx_handle)
            yield FlowState(
                FlowStep.FAILED, request.kind,
                message="A previous transaction is still unconfirmed; re-check it before trying again",
                tx_handle=pending.tx_handle,
                error=FlowInProgress(f"{pending.tx_handle} for {key} is awaiting confirmation"),
            )
            return

        self._in_flight.add(key)
        try:
            yield FlowState(FlowStep.IDLE, request.kind, message="Preparing transaction")
            prepared: Optional[PreparedAction] = None
            try:
                prepared = await self._prepare(request)

                if prepared.approval is not None:
                    async for state in self._ensure_allowance(request, prepared):
                        yield state

                yield FlowState(FlowStep.SIMULATING, request.kind, message="Simulating transaction", prepared=prepared)
                await self._simulate(prepared.call, request.account)
                yield FlowState(FlowStep.READY, request.kind, message="Simulation passed", prepared=prepared)

                handle = await self._submit(prepared.call, request.account)
                yield FlowState(
                    FlowStep.SUBMITTING, request.kind,
                    message="Waiting for confirmation", tx_handle=handle, prepared=prepared,
                )
                await self._confirm_or_park(
                    UnconfirmedTransaction(handle, key, request.kind, prepared, tuple(prepared.invalidates))
                )

                self.cache.invalidate(prepared.invalidates)
                logger.info("%s confirmed: %s", request.kind.value, handle)
                yield FlowState(
                    FlowStep.CONFIRMED, request.kind,
                    message="Transaction confirmed", tx_handle=handle, prepared=prepared,
                )
            except LendingError as exc:
                logger.warning("%s failed: %s", request.kind.value, exc)
                yield FlowState(
                    FlowStep.FAILED, request.kind,
                    message=_failure_message(exc),
                    tx_handle=getattr(exc, "tx_handle", None),
                    error=exc,
                    prepared=prepared,
                )
        finally:
            self._in_flight.discard(key)

    async def execute(self, request: ActionRequest) -> FlowState:
        """Drive a flow to completion and return its terminal state."""
        final = None
        async for state in self.run_transaction_flow(request):
            final = state
        return final

    async def recheck_confirmation(self, tx_handle: TxHandle) -> FlowState:
        """
        Manually re-check a transaction whose confirmation timed out.

        On success the snapshots the transaction affects are invalidated and
        its flow key is released. A confirmed action ends CONFIRMED; a
        confirmed approval ends APPROVAL_CONFIRMED and the action has to be
        run again. Another timeout leaves the handle recheckable; a revert
        releases the key.

        Raises:
            KeyError: the handle is not awaiting confirmation
        """
        entry = self._find_unconfirmed(tx_handle)
        try:
            await self._confirm(tx_handle)
        except LendingError as exc:
            if not isinstance(exc, ConfirmationTimeout):
                self._unconfirmed.pop(entry.flow_key, None)
            return FlowState(
                FlowStep.FAILED, entry.kind,
                message=_failure_message(exc), tx_handle=tx_handle, error=exc, prepared=entry.prepared,
            )
        self._unconfirmed.pop(entry.flow_key, None)
        self.cache.invalidate(entry.invalidates)
        logger.info("%s %s confirmed on re-check", entry.kind.value, tx_handle)
        if entry.is_approval:
            return FlowState(
                FlowStep.APPROVAL_CONFIRMED, entry.kind,
                message="Approval confirmed; run the action again",
                tx_handle=tx_handle, prepared=entry.prepared,
            )
        return FlowState(
            FlowStep.CONFIRMED, entry.kind,
            message="Transaction confirmed", tx_handle=tx_handle, prepared=entry.prepared,
        )

    def discard_unconfirmed(self, tx_handle: TxHandle) -> UnconfirmedTransaction:
        """
        Stop tracking a timed-out transaction (dropped or replaced) and
        release its flow key. No snapshot is invalidated.

        Raises:
            KeyError: the handle is not awaiting confirmation
        """
        entry = self._find_unconfirmed(tx_handle)
        del self._unconfirmed[entry.flow_key]
        logger.info("Discarded unconfirmed %s %s", entry.kind.value, tx_handle)
        return entry

    def _find_unconfirmed(self, tx_handle: TxHandle) -> UnconfirmedTransaction:
        for entry in self._unconfirmed.values():
            if entry.tx_handle == tx_handle:
                return entry
        raise KeyError(f"No unconfirmed transaction {tx_handle}")

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _prepare(self, request: ActionRequest) -> PreparedAction:
        preparer = self.preparers.get(request.kind)
        if preparer is None:
            raise ActionNotAllowed(f"No preparer registered for {request.kind.value}")
        try:
            return await preparer(self.context, request)
        except ValueError as exc:
            raise ActionNotAllowed(str(exc)) from exc

    async def _ensure_allowance(
        self, request: ActionRequest, prepared: PreparedAction
    ) -> AsyncIterator[FlowState]:
        approval: TokenApproval = prepared.approval
        account = request.account

        balance = await self.reader.get_balance(approval.token, account, refresh=True)
        if balance < approval.amount:
            raise InsufficientBalance(
                f"Balance {balance} of {approval.token} is below the required {approval.amount}"
            )

        allowance = await self.reader.get_allowance(approval.token, account, approval.spender, refresh=True)
        if allowance >= approval.amount:
            return

        approve_amount = add_headroom(approval.amount, self.config.approval_headroom_bps)
        approve_call = ContractCall(approval.token, "approve", (approval.spender, approve_amount))
        yield FlowState(
            FlowStep.APPROVING, request.kind,
            message=f"Approving {approve_amount} of {approval.token}", prepared=prepared,
        )
        await self._simulate(approve_call, account)
        handle = await self._submit(approve_call, account)
        yield FlowState(
            FlowStep.APPROVING, request.kind,
            message="Waiting for approval confirmation", tx_handle=handle, prepared=prepared,
        )
        spend_key = allowance_key(approval.token, account, approval.spender)
        await self._confirm_or_park(
            UnconfirmedTransaction(handle, request.flow_key, request.kind, prepared, (spend_key,), is_approval=True)
        )
        self.cache.invalidate([spend_key])

        await self._await_allowance(approval, account)
        yield FlowState(
            FlowStep.APPROVAL_CONFIRMED, request.kind,
            message="Approval confirmed", tx_handle=handle, prepared=prepared,
        )

    async def _await_allowance(self, approval: TokenApproval, account: Address) -> int:
        """Re-read the allowance until it covers the requirement or the policy gives up."""
        async def read_allowance() -> int:
            allowance = await self.reader.get_allowance(approval.token, account, approval.spender, refresh=True)
            if allowance < approval.amount:
                raise AllowanceNotPropagated(f"Allowance not updated: {allowance} < {approval.amount}")
            return allowance

        return await self.allowance_policy.run(read_allowance, sleep=self.sleep)

    async def _simulate(self, call: ContractCall, account: Address) -> None:
        result = await self.transport.simulate_write(call.address, call.selector, call.args, account)
        if not result.success:
            reason = decode_simulation_error(result)
            logger.warning("Simulation of %s failed: %s", call.describe(), reason)
            raise SimulationFailed(reason)

    async def _submit(self, call: ContractCall, account: Address) -> TxHandle:
        handle = await self.transport.submit_write(call.address, call.selector, call.args, account)
        logger.info("Submitted %s as %s", call.describe(), handle)
        return handle

    async def _confirm_or_park(self, entry: UnconfirmedTransaction) -> None:
        """Confirm; on timeout keep the entry so its flow key stays blocked."""
        try:
            await self._confirm(entry.tx_handle)
        except ConfirmationTimeout:
            self._unconfirmed[entry.flow_key] = entry
            raise

    async def _confirm(self, handle: TxHandle) -> None:
        timeout = self.config.confirmation_timeout_seconds
        try:
            receipt = await asyncio.wait_for(self.transport.await_receipt(handle), timeout)
        except asyncio.TimeoutError:
            logger.warning("No receipt for %s within %ss", handle, timeout)
            raise ConfirmationTimeout(handle, timeout) from None
        if not receipt.succeeded:
            raise TransactionReverted(handle)

    def __repr__(self):
        return (
            f"TransactionOrchestrator({len(self._in_flight)} in flight, "
            f"{len(self._unconfirmed)} unconfirmed, {len(self.preparers)} actions)"
        )
