"""Transaction execution — estimate, submit with retry, wait for confirmation."""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from decimal import ROUND_CEILING, Decimal
from typing import Any, Awaitable, Callable, Iterable, Mapping

from ..config import ExecutionConfig
from ..errors import (
    ConfirmationTimeout,
    EstimationError,
    ExecutionError,
    ExecutionReverted,
    StatusQueryFailed,
    SubmissionFailed,
)
from ..interfaces.ledger import LedgerProvider, Signer
from ..models import (
    FeeEstimate,
    LedgerCall,
    LedgerTxStatus,
    Receipt,
    SignedCall,
    SubmissionResult,
    TransactionRecord,
    TransactionState,
    TransactionStatusReport,
)
from .retry import is_hash_not_found, is_retryable

logger = logging.getLogger(__name__)


def _ceil_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


# Rejections of a resent payload that an earlier attempt can explain.
_RESEND_REJECTIONS = ("already known", "nonce too low")


def _may_have_landed(error: BaseException) -> bool:
    message = str(error).lower()
    return any(pattern in message for pattern in _RESEND_REJECTIONS)


class TransactionManager:
    """Drives state-changing ledger calls to a durable outcome.

    Every public coroutine either returns a well-formed result or raises an
    :class:`~collateral_guard.errors.ExecutionError` subclass.
    """

    def __init__(
        self,
        provider: LedgerProvider,
        config: ExecutionConfig,
        signer: Signer | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._config = config
        self._signer = signer
        self._sleep = sleep
        self._clock = clock
        self._records: deque[TransactionRecord] = deque(maxlen=config.record_history)

    @property
    def sender_address(self) -> str | None:
        """Account that signs and pays for submitted calls."""
        return self._signer.address if self._signer is not None else None

    # ------------------------------------------------------------------
    # Record bookkeeping
    # ------------------------------------------------------------------

    def records(self) -> list[TransactionRecord]:
        """Most recent transaction records, oldest first."""
        return list(self._records)

    def record_for(self, transaction_hash: str) -> TransactionRecord | None:
        for record in reversed(self._records):
            if record.transaction_hash == transaction_hash:
                return record
        return None

    @staticmethod
    def _resolve(record: TransactionRecord | None, state: TransactionState) -> None:
        if record is not None and record.state is TransactionState.PENDING:
            record.transition(state)

    # ------------------------------------------------------------------
    # Fee estimation
    # ------------------------------------------------------------------

    def _apply_buffer(self, raw: Mapping[str, Any]) -> FeeEstimate:
        multiplier = self._config.gas_multiplier
        buffered: dict[str, int] = {}
        for key, value in raw.items():
            if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
                continue
            buffered[key] = _ceil_int(Decimal(str(value)) * multiplier)

        if "overall_fee" not in buffered:
            raise EstimationError(f"Provider estimate has no overall_fee: {dict(raw)}")

        return FeeEstimate(
            overall_fee=buffered["overall_fee"],
            suggested_max_fee=buffered.get("suggested_max_fee", buffered["overall_fee"]),
            gas_consumed=buffered.get("gas_consumed"),
            gas_price=buffered.get("gas_price"),
        )

    async def estimate_fee(
        self, target: str, method: str, params: Iterable[Any] = (), *, value: int = 0
    ) -> FeeEstimate:
        """Ask the provider for a fee estimate and apply the safety buffer once."""
        if self._signer is None:
            raise EstimationError("Signer not configured. Cannot estimate fee.")

        call = LedgerCall(
            target=target,
            method=method,
            params=tuple(params),
            value=value,
            sender=self._signer.address,
        )
        logger.info("Estimating fee for %s at %s", method, target)

        try:
            raw = await self._provider.estimate_call(call)
        except Exception as e:
            logger.error("Fee estimation failed for %s: %s", method, e)
            raise EstimationError(f"Fee estimation failed: {e}") from e

        estimate = self._apply_buffer(raw)
        logger.info(
            "Fee estimated: %d (with %sx buffer)",
            estimate.overall_fee,
            self._config.gas_multiplier,
        )
        return estimate

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def _landed(self, transaction_hash: str) -> bool:
        """Whether the ledger has seen ``transaction_hash`` (pending or mined)."""
        try:
            report = await self._provider.get_transaction_status(transaction_hash)
        except Exception as e:
            logger.warning("Could not look up %s after resend: %s", transaction_hash, e)
            return False
        return report.status is not LedgerTxStatus.NOT_FOUND

    async def submit(
        self,
        target: str,
        method: str,
        params: Iterable[Any] = (),
        *,
        value: int = 0,
        max_fee: int | None = None,
        gas_limit: int | None = None,
    ) -> SubmissionResult:
        """Sign and submit a call, retrying transient failures.

        The call is signed once and the same payload is resent on retry, so a
        lost response cannot turn into a second, different transaction.
        """
        params = tuple(params)
        record = TransactionRecord(target_contract=target, method=method, params=params)
        self._records.append(record)

        max_retries = self._config.max_retries
        retry_delay = self._config.retry_delay_ms / 1000
        signed: SignedCall | None = None

        for attempt in range(1, max_retries + 1):
            record.attempt = attempt
            try:
                if self._signer is None:
                    raise ExecutionError("Signer not configured. Cannot submit transaction.")

                logger.info(
                    "Submitting transaction (attempt %d/%d): %s", attempt, max_retries, method
                )
                if signed is None:
                    signed = await self._signer.sign(
                        LedgerCall(
                            target=target,
                            method=method,
                            params=params,
                            value=value,
                            sender=self._signer.address,
                            max_fee=max_fee,
                            gas_limit=gas_limit,
                        )
                    )
                transaction_hash = await self._provider.submit_signed_call(signed)
            except Exception as e:
                if (
                    attempt > 1
                    and signed is not None
                    and signed.transaction_hash
                    and _may_have_landed(e)
                    and await self._landed(signed.transaction_hash)
                ):
                    # An earlier attempt reached the node; its response was lost.
                    logger.info(
                        "Transaction %s from an earlier attempt is on the ledger",
                        signed.transaction_hash,
                    )
                    transaction_hash = signed.transaction_hash
                else:
                    retryable = is_retryable(e)
                    logger.warning(
                        "Transaction submission failed (attempt %d/%d, retryable=%s): %s",
                        attempt,
                        max_retries,
                        retryable,
                        e,
                    )
                    if retryable and attempt < max_retries:
                        logger.info("Retrying in %dms...", self._config.retry_delay_ms)
                        await self._sleep(retry_delay)
                        continue

                    record.error = str(e)
                    record.transition(TransactionState.FAILED)
                    raise SubmissionFailed(attempt, e) from e

            record.transaction_hash = transaction_hash
            record.transition(TransactionState.PENDING)
            logger.info("Transaction submitted successfully: %s", transaction_hash)
            return SubmissionResult(
                transaction_hash=transaction_hash, attempt=attempt, record=record
            )

        # max_retries >= 1 is enforced by config validation
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def get_transaction_status(self, transaction_hash: str) -> TransactionStatusReport:
        """Single status query; an unknown hash is reported as NOT_FOUND."""
        try:
            return await self._provider.get_transaction_status(transaction_hash)
        except Exception as e:
            if is_hash_not_found(e):
                return TransactionStatusReport(
                    transaction_hash=transaction_hash, status=LedgerTxStatus.NOT_FOUND
                )
            raise StatusQueryFailed(transaction_hash, e) from e

    async def wait_for_confirmation(
        self, transaction_hash: str, max_wait_ms: int | None = None
    ) -> Receipt:
        """Poll until the ledger resolves the transaction or the window closes."""
        timeout_ms = (
            self._config.confirmation_timeout_ms if max_wait_ms is None else max_wait_ms
        )
        poll_interval = self._config.poll_interval_ms / 1000
        deadline = self._clock() + timeout_ms / 1000
        record = self.record_for(transaction_hash)

        logger.info("Waiting for transaction confirmation: %s", transaction_hash)

        while True:
            report: TransactionStatusReport | None = None
            try:
                report = await self._provider.get_transaction_status(transaction_hash)
            except Exception as e:
                if is_hash_not_found(e):
                    logger.debug("Transaction %s not visible yet", transaction_hash)
                elif is_retryable(e):
                    logger.warning(
                        "Transient error polling %s, will retry: %s", transaction_hash, e
                    )
                else:
                    logger.error("Status query failed for %s: %s", transaction_hash, e)
                    raise StatusQueryFailed(transaction_hash, e) from e

            if report is not None and report.status is LedgerTxStatus.SUCCEEDED:
                self._resolve(record, TransactionState.CONFIRMED)
                logger.info(
                    "Transaction confirmed: %s (block %s)",
                    transaction_hash,
                    report.block_number,
                )
                return Receipt(
                    transaction_hash=transaction_hash,
                    block_number=report.block_number,
                    block_hash=report.block_hash,
                    gas_used=report.gas_used,
                    attempt=record.attempt if record else 1,
                    raw=report.raw,
                )

            if report is not None and report.status is LedgerTxStatus.REVERTED:
                self._resolve(record, TransactionState.REVERTED)
                logger.error("Transaction reverted: %s", transaction_hash)
                raise ExecutionReverted(transaction_hash, report)

            remaining = deadline - self._clock()
            if remaining <= 0:
                self._resolve(record, TransactionState.TIMED_OUT)
                logger.error(
                    "Transaction confirmation timeout after %dms: %s",
                    timeout_ms,
                    transaction_hash,
                )
                raise ConfirmationTimeout(transaction_hash, timeout_ms)

            await self._sleep(min(poll_interval, remaining))

    # ------------------------------------------------------------------
    # Compositions
    # ------------------------------------------------------------------

    async def submit_and_wait(
        self,
        target: str,
        method: str,
        params: Iterable[Any] = (),
        *,
        value: int = 0,
        max_fee: int | None = None,
        gas_limit: int | None = None,
    ) -> Receipt:
        submission = await self.submit(
            target, method, params, value=value, max_fee=max_fee, gas_limit=gas_limit
        )
        return await self.wait_for_confirmation(submission.transaction_hash)

    async def estimate_and_submit(
        self, target: str, method: str, params: Iterable[Any] = (), *, value: int = 0
    ) -> SubmissionResult:
        params = tuple(params)
        estimate = await self.estimate_fee(target, method, params, value=value)
        return await self.submit(
            target,
            method,
            params,
            value=value,
            max_fee=estimate.suggested_max_fee,
            gas_limit=estimate.gas_consumed,
        )

    async def submit_transaction(
        self, target: str, method: str, params: Iterable[Any] = (), *, value: int = 0
    ) -> Receipt:
        """Full path for higher-level operations: estimate, submit, confirm."""
        submission = await self.estimate_and_submit(target, method, params, value=value)
        return await self.wait_for_confirmation(submission.transaction_hash)
