"""
Payment submission state machine
Drives one PaymentIntent from wallet connection to a recorded purchase
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, FrozenSet, Optional, Tuple, TypeVar

import structlog

from src.ledger.transactions import build_transfer_transaction, serialize_transaction
from src.payments.errors import CollaboratorError, ErrorKind, InvalidTransition
from src.payments.models import (
    FailureKind,
    FailureReason,
    PaymentIntent,
    PaymentStatus,
    Plan,
    PurchaseReceipt,
    PurchaseRequest,
    StatusUpdate,
    lamports_to_sol,
    sol_to_lamports,
)

if TYPE_CHECKING:
    from src.config import PaymentConfig
    from src.ledger.resolver import EndpointResolver
    from src.ledger.rpc import LedgerClient
    from src.payments.recorder import BackendRecorder
    from src.wallet.provider import WalletProvider

logger = structlog.get_logger()

T = TypeVar("T")
S = PaymentStatus

TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    S.IDLE: frozenset({S.WALLET_CONNECTING, S.CANCELLED}),
    S.WALLET_CONNECTING: frozenset({S.WALLET_CONNECTED, S.IDLE, S.FAILED, S.CANCELLED}),
    S.WALLET_CONNECTED: frozenset({S.SUBMITTING, S.IDLE, S.CANCELLED}),
    S.SUBMITTING: frozenset({S.AWAITING_SIGNATURE, S.FAILED, S.CANCELLED}),
    S.AWAITING_SIGNATURE: frozenset({S.BROADCASTING, S.FAILED, S.CANCELLED}),
    S.BROADCASTING: frozenset({S.CONFIRMING, S.FAILED}),
    S.CONFIRMING: frozenset({S.RECORDING, S.FAILED}),
    S.RECORDING: frozenset({S.SUCCEEDED, S.FAILED}),
    S.SUCCEEDED: frozenset(),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Once broadcasting starts the transfer is irreversible
CANCELLABLE_STATUSES = frozenset({
    S.IDLE,
    S.WALLET_CONNECTING,
    S.WALLET_CONNECTED,
    S.SUBMITTING,
    S.AWAITING_SIGNATURE,
})

SIGNED_STATUSES = frozenset({S.CONFIRMING, S.RECORDING, S.SUCCEEDED})

STATUS_MESSAGES: Dict[PaymentStatus, str] = {
    S.IDLE: "Connect a wallet to continue",
    S.WALLET_CONNECTING: "Connecting wallet...",
    S.WALLET_CONNECTED: "Wallet connected",
    S.SUBMITTING: "Preparing transaction...",
    S.AWAITING_SIGNATURE: "Approve the transaction in your wallet",
    S.BROADCASTING: "Sending transaction...",
    S.CONFIRMING: "Waiting for confirmation...",
    S.RECORDING: "Recording purchase...",
    S.SUCCEEDED: "Payment successful",
    S.FAILED: "Payment failed",
    S.CANCELLED: "Payment cancelled",
}

FAILURE_MESSAGES: Dict[FailureKind, str] = {
    FailureKind.WALLET_UNAVAILABLE: "No wallet available. Install or unlock a Solana wallet and try again.",
    FailureKind.WALLET_CONNECTION_FAILED: "Failed to connect wallet.",
    FailureKind.USER_REJECTED: "Transaction was rejected in the wallet.",
    FailureKind.INSUFFICIENT_BALANCE: "Insufficient balance.",
    FailureKind.NO_ENDPOINT_AVAILABLE: "Could not reach the Solana network. Please try again later.",
    FailureKind.BROADCAST_FAILED: "The transaction could not be sent to the network.",
    FailureKind.ON_CHAIN_ERROR: "The transaction failed on-chain.",
    FailureKind.CONFIRMATION_TIMEOUT: "The transaction was not confirmed in time.",
    FailureKind.RECORDING_FAILED: "The payment could not be recorded.",
    FailureKind.UNKNOWN_ERROR: "Payment processing failed.",
}

_CLASSIFICATION: Dict[Tuple[PaymentStatus, ErrorKind], FailureKind] = {
    (S.WALLET_CONNECTING, ErrorKind.WALLET_UNAVAILABLE): FailureKind.WALLET_UNAVAILABLE,
    (S.WALLET_CONNECTING, ErrorKind.NO_ENDPOINT): FailureKind.NO_ENDPOINT_AVAILABLE,
    (S.SUBMITTING, ErrorKind.NO_ENDPOINT): FailureKind.NO_ENDPOINT_AVAILABLE,
    (S.SUBMITTING, ErrorKind.RPC_ERROR): FailureKind.NO_ENDPOINT_AVAILABLE,
    (S.SUBMITTING, ErrorKind.RPC_TIMEOUT): FailureKind.NO_ENDPOINT_AVAILABLE,
    (S.AWAITING_SIGNATURE, ErrorKind.WALLET_REJECTED): FailureKind.USER_REJECTED,
    (S.AWAITING_SIGNATURE, ErrorKind.WALLET_UNAVAILABLE): FailureKind.WALLET_UNAVAILABLE,
    (S.CONFIRMING, ErrorKind.RPC_TIMEOUT): FailureKind.CONFIRMATION_TIMEOUT,
}

_STATUS_FALLBACK: Dict[PaymentStatus, FailureKind] = {
    S.WALLET_CONNECTING: FailureKind.WALLET_CONNECTION_FAILED,
    S.BROADCASTING: FailureKind.BROADCAST_FAILED,
    S.RECORDING: FailureKind.RECORDING_FAILED,
}


def assert_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    if target not in TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(f"Illegal payment transition: {current.value} -> {target.value}")


def classify(status: PaymentStatus, kind: Optional[ErrorKind]) -> FailureKind:
    """Map the status an error surfaced in and its kind to a failure category"""
    if kind is not None and (status, kind) in _CLASSIFICATION:
        return _CLASSIFICATION[(status, kind)]
    return _STATUS_FALLBACK.get(status, FailureKind.UNKNOWN_ERROR)


def error_kind(error: BaseException) -> Optional[ErrorKind]:
    if isinstance(error, CollaboratorError):
        return error.kind
    return None


class _Cancelled(Exception):
    """User cancelled while the flow was suspended"""


class PaymentStateMachine:
    """
    Payment flow for one dialog.

    Holds at most one active PaymentIntent. Each suspension point (wallet
    prompt, RPC call, backend call) completes or fails before the next
    transition is evaluated. Terminal intents are never reused; call
    start_new_attempt() to get a fresh one.

    Args:
        plan: Plan being purchased
        wallet: Injected wallet provider, or None when no wallet is installed
        resolver: Picks the RPC endpoint used for this attempt
        recorder: Backend recorder client
        config: Payment configuration (treasury, commitment, timeouts, fees)
        on_status: Called with a StatusUpdate on every transition
        on_complete: Called with the intent when it succeeds or fails
    """

    def __init__(
        self,
        plan: Plan,
        wallet: Optional["WalletProvider"],
        resolver: "EndpointResolver",
        recorder: "BackendRecorder",
        config: "PaymentConfig",
        on_status: Optional[Callable[[StatusUpdate], None]] = None,
        on_complete: Optional[Callable[[PaymentIntent], None]] = None,
    ):
        self.plan = plan
        self.wallet = wallet
        self.resolver = resolver
        self.recorder = recorder
        self.config = config
        self.on_status = on_status
        self.on_complete = on_complete
        self.receipt: Optional[PurchaseReceipt] = None

        self._intent = PaymentIntent(plan=plan)
        self._rpc: Optional["LedgerClient"] = None
        self._inflight: Optional[asyncio.Future] = None
        self._running = False
        self._cancel_requested = False

    @property
    def intent(self) -> PaymentIntent:
        return self._intent

    @property
    def estimated_fee(self) -> Decimal:
        return lamports_to_sol(self.config.estimated_fee_lamports)

    @property
    def required_amount(self) -> Decimal:
        """Plan price plus the fee reserve, in SOL"""
        return self.plan.price + self.estimated_fee

    @property
    def can_pay(self) -> bool:
        return self._intent.status == S.WALLET_CONNECTED and not self._running

    @property
    def can_cancel(self) -> bool:
        return self._intent.status in CANCELLABLE_STATUSES

    # ===== OPERATIONS =====

    async def connect(self) -> PaymentIntent:
        """Connect the wallet, pick an RPC endpoint and snapshot the balance"""
        intent = self._intent
        if intent.status != S.IDLE:
            raise InvalidTransition(f"Cannot connect wallet while {intent.status.value}")

        self._begin()
        try:
            self._transition(S.WALLET_CONNECTING)

            if self.wallet is None:
                self._fail(FailureKind.WALLET_UNAVAILABLE)
                return intent

            try:
                address = await self._suspend(self.wallet.connect())
                self._rpc = await self._suspend(self.resolver.resolve())
                lamports = await self._suspend(self._rpc.get_balance(address, self.config.commitment))
            except _Cancelled:
                self._rpc = None
                if self.wallet.is_connected:
                    await self._release_wallet()
                self._transition(S.CANCELLED)
                return intent
            except Exception as e:
                kind = classify(S.WALLET_CONNECTING, error_kind(e))
                logger.warning("wallet_connection_failed", intent_id=intent.intent_id, kind=kind.value, error=str(e))
                self._rpc = None
                if kind == FailureKind.WALLET_CONNECTION_FAILED:
                    # Not terminal: back to Idle so the user can retry the connect
                    failure = FailureReason(kind=kind, message=self._failure_message(kind, str(e)))
                    self._transition(S.IDLE, message=failure.message, failure=failure)
                else:
                    self._fail(kind, str(e))
                return intent

            intent.payer_address = address
            intent.payer_balance = lamports_to_sol(lamports)
            self._transition(S.WALLET_CONNECTED, message=f"Connected with {intent.payer_balance} SOL")
            return intent
        finally:
            self._end()

    async def disconnect(self) -> PaymentIntent:
        """Disconnect the wallet and return to Idle"""
        intent = self._intent
        if intent.status != S.WALLET_CONNECTED or self._running:
            raise InvalidTransition(f"Cannot disconnect wallet while {intent.status.value}")

        if self.wallet is not None:
            await self._release_wallet()

        intent.payer_address = None
        intent.payer_balance = None
        self._rpc = None
        self._transition(S.IDLE, message="Wallet disconnected")
        return intent

    async def pay(self) -> PaymentIntent:
        """Run the payment from Submitting to a terminal state"""
        if not self.can_pay:
            raise InvalidTransition(
                f"Cannot pay while {self._intent.status.value}"
                + (" (attempt in flight)" if self._running else "")
            )

        self._begin()
        try:
            await self._submit(self._intent)
        finally:
            self._end()
        return self._intent

    def cancel(self) -> bool:
        """
        Cancel the current attempt.

        Returns False once broadcasting has started or the intent is terminal.
        """
        if not self.can_cancel:
            logger.info("payment_cancel_refused", intent_id=self._intent.intent_id, status=self._intent.status.value)
            return False

        if self._running:
            self._cancel_requested = True
            if self._inflight is not None and not self._inflight.done():
                self._inflight.cancel()
            return True

        self._transition(S.CANCELLED)
        return True

    def start_new_attempt(self) -> PaymentIntent:
        """Discard a terminal intent and start over with a fresh one"""
        if self._running or not self._intent.is_terminal:
            raise InvalidTransition(f"Cannot start a new attempt while {self._intent.status.value}")

        previous = self._intent
        self._intent = PaymentIntent(plan=self.plan)
        self._rpc = None
        self.receipt = None
        logger.info(
            "payment_attempt_restarted",
            previous_intent_id=previous.intent_id,
            intent_id=self._intent.intent_id
        )
        return self._intent

    # ===== FLOW =====

    async def _submit(self, intent: PaymentIntent):
        self._transition(S.SUBMITTING)

        required = self.required_amount
        if intent.payer_balance is None or intent.payer_balance < required:
            self._fail(FailureKind.INSUFFICIENT_BALANCE, message=self._insufficient_message(required, intent.payer_balance))
            return

        try:
            if self.config.fresh_balance_check:
                lamports = await self._suspend(self._rpc.get_balance(intent.payer_address, self.config.commitment))
                current = lamports_to_sol(lamports)
                if current < required:
                    logger.warning(
                        "payment_balance_changed",
                        intent_id=intent.intent_id,
                        snapshot=str(intent.payer_balance),
                        current=str(current)
                    )
                    self._fail(FailureKind.INSUFFICIENT_BALANCE, message=self._insufficient_message(required, current))
                    return

            blockhash = await self._suspend(self._rpc.get_latest_blockhash(self.config.commitment))
            tx = build_transfer_transaction(
                payer=intent.payer_address,
                recipient=self.config.treasury_address,
                lamports=sol_to_lamports(self.plan.price),
                blockhash=blockhash,
            )

            self._transition(S.AWAITING_SIGNATURE)
            signed = await self._suspend(self.wallet.sign_transaction(tx))
        except _Cancelled:
            self._transition(S.CANCELLED)
            return
        except Exception as e:
            self._fail_from(e)
            return

        self._transition(S.BROADCASTING)
        try:
            signature = await self._rpc.send_raw_transaction(serialize_transaction(signed), self.config.commitment)
        except Exception as e:
            self._fail_from(e)
            return

        intent.transaction_signature = signature
        self._transition(S.CONFIRMING)
        try:
            result = await asyncio.wait_for(
                self._rpc.confirm_transaction(
                    signature,
                    self.config.commitment,
                    self.config.confirmation_poll_interval,
                ),
                timeout=self.config.confirmation_timeout,
            )
        except asyncio.TimeoutError:
            self._fail(
                FailureKind.CONFIRMATION_TIMEOUT,
                f"not confirmed after {self.config.confirmation_timeout:g}s"
            )
            return
        except Exception as e:
            self._fail_from(e)
            return

        if result.err is not None:
            self._fail(FailureKind.ON_CHAIN_ERROR, str(result.err))
            return

        self._transition(S.RECORDING)
        try:
            self.receipt = await self.recorder.record(
                PurchaseRequest(
                    hours=self.plan.hours,
                    sol=self.plan.price,
                    wallet_address=intent.payer_address,
                    transaction_hash=signature,
                )
            )
        except Exception as e:
            self._fail_from(e)
            return

        self._transition(S.SUCCEEDED, message=self.receipt.message)

    # ===== PLUMBING =====

    def _begin(self):
        if self._running:
            raise InvalidTransition("A payment attempt is already in flight")
        self._running = True
        self._cancel_requested = False

    async def _release_wallet(self):
        try:
            await self.wallet.disconnect()
        except CollaboratorError as e:
            logger.warning("wallet_disconnect_failed", intent_id=self._intent.intent_id, error=str(e))

    def _end(self):
        self._running = False
        self._cancel_requested = False
        self._inflight = None

    async def _suspend(self, awaitable: Awaitable[T]) -> T:
        """Await a cancellable collaborator call"""
        if self._cancel_requested:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise _Cancelled()

        self._inflight = asyncio.ensure_future(awaitable)
        try:
            result = await self._inflight
        except asyncio.CancelledError:
            if self._cancel_requested:
                raise _Cancelled() from None
            raise
        finally:
            self._inflight = None

        if self._cancel_requested:
            raise _Cancelled()
        return result

    def _transition(
        self,
        target: PaymentStatus,
        message: Optional[str] = None,
        failure: Optional[FailureReason] = None,
    ):
        intent = self._intent
        assert_transition(intent.status, target)
        if target in SIGNED_STATUSES and not intent.transaction_signature:
            raise InvalidTransition(f"{target.value} requires a transaction signature")

        previous = intent.status
        intent.status = target
        intent.updated_at = datetime.utcnow()
        if target == S.FAILED:
            intent.failure = failure

        logger.info(
            "payment_transition",
            intent_id=intent.intent_id,
            from_status=previous.value,
            to_status=target.value
        )

        self._notify(StatusUpdate(
            intent_id=intent.intent_id,
            status=target,
            message=message or STATUS_MESSAGES[target],
            failure=failure,
            transaction_signature=intent.transaction_signature,
        ))

        if target in (S.SUCCEEDED, S.FAILED) and self.on_complete is not None:
            try:
                self.on_complete(intent)
            except Exception as e:
                logger.error("payment_complete_callback_failed", intent_id=intent.intent_id, error=str(e))

    def _notify(self, update: StatusUpdate):
        if self.on_status is None:
            return
        try:
            self.on_status(update)
        except Exception as e:
            logger.error("payment_status_callback_failed", intent_id=update.intent_id, error=str(e))

    def _fail(self, kind: FailureKind, detail: Optional[str] = None, message: Optional[str] = None):
        signature = self._intent.transaction_signature
        failure = FailureReason(
            kind=kind,
            message=message or self._failure_message(kind, detail),
            transaction_signature=signature,
        )
        logger.warning(
            "payment_failed",
            intent_id=self._intent.intent_id,
            kind=kind.value,
            status=self._intent.status.value,
            detail=detail,
            transaction_signature=signature
        )
        self._transition(S.FAILED, message=failure.message, failure=failure)

    def _fail_from(self, error: Exception):
        kind = classify(self._intent.status, error_kind(error))
        if kind == FailureKind.UNKNOWN_ERROR:
            logger.error("payment_unexpected_error", intent_id=self._intent.intent_id, exc_info=error)
        self._fail(kind, str(error))

    def _failure_message(self, kind: FailureKind, detail: Optional[str] = None) -> str:
        signature = self._intent.transaction_signature
        if kind == FailureKind.RECORDING_FAILED:
            # Funds already moved: the signature is the user's only receipt
            return (
                f"Your payment was sent on-chain but could not be recorded. "
                f"Transaction signature: {signature}. "
                f"Contact support with this signature so your {self.plan.hours} hours "
                f"can be added manually."
            )

        message = FAILURE_MESSAGES[kind]
        if detail:
            message = f"{message} ({detail})"
        if signature:
            message = f"{message} Transaction signature: {signature}"
        return message

    def _insufficient_message(self, required: Decimal, balance: Optional[Decimal]) -> str:
        have = balance if balance is not None else Decimal(0)
        return (
            f"Insufficient balance. You need {required.normalize():f} SOL "
            f"(including fees) but have {have.normalize():f} SOL."
        )
