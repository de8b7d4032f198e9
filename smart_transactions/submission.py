"""
Submission & confirmation engine.

A submission signs the draft exactly once and then drives the same signed
bytes through one or more send/confirm attempts:

    signed -> SENT -> CONFIRMED | EXPIRED | REJECTED
                \\-> CANCELLED | TIMED_OUT

Only TransportTransient failures (including an attempt that was not
confirmed within ``attempt_timeout``) lead to another attempt, and only while
``max_client_side_retries`` allows it. Resending identical bytes is a no-op on
the network if an earlier attempt already landed, which is why the engine
never re-signs between attempts. LifetimeExpired, SimulationRejected and
Cancelled end the submission immediately. ``timeout`` is a wall-clock budget
across all attempts and fires regardless of the remaining retries.

A raised TransactionError carries the state the submission ended in as
``final_state``. Running out of retries ends in SENT. Once an earlier attempt
has been sent, a later failure always reports ``may_have_reached_network``.
"""

import asyncio
import logging
from typing import List, Optional

from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .concurrency import run_abortable
from .exceptions import (
    Cancelled,
    ConfirmationTimeoutError,
    LifetimeExpired,
    SimulationRejected,
    SmartTransactionError,
    SubmissionFailed,
    TransactionError,
    TransactionSignError,
    TransportTransient,
)
from .interfaces import SendConfirmService, Signer
from .models import (
    AttemptOutcome,
    DraftTransaction,
    SignedTransaction,
    SubmissionAttempt,
    SubmissionReport,
    SubmissionState,
    SubmitOptions,
)
from .retry import BackoffStrategy, ExponentialBackoff, RetryConfig, RetryStatistics, should_retry

logger = logging.getLogger(__name__)


async def sign_draft(draft: DraftTransaction, signer: Signer) -> SignedTransaction:
    if signer.fee_payer != draft.fee_payer:
        raise TransactionSignError(
            "Signer does not hold the draft's fee payer",
            context={"fee_payer": str(draft.fee_payer), "signer": str(signer.fee_payer)},
        )

    message = draft.compile()

    try:
        signatures = list(await signer.sign_message(message))
    except SmartTransactionError:
        raise
    except Exception as e:
        raise TransactionSignError(f"Failed to sign transaction: {e}") from e

    required = message.header.num_required_signatures
    if len(signatures) != required:
        raise TransactionSignError(
            f"Signer returned {len(signatures)} signatures, transaction requires {required}",
        )

    return SignedTransaction(draft, VersionedTransaction.populate(message, signatures))


class SubmissionEngine:

    def __init__(
        self,
        sender: SendConfirmService,
        strategy: Optional[BackoffStrategy] = None,
        retry_base_delay: float = 0.5,
        retry_max_delay: float = 5.0,
        jitter: bool = True,
    ):
        self.sender = sender
        self.strategy = strategy or ExponentialBackoff()
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.jitter = jitter
        self.statistics = RetryStatistics()

    def _retry_config(self, options: SubmitOptions) -> RetryConfig:
        return RetryConfig(
            max_retries=options.max_client_side_retries,
            base_delay=self.retry_base_delay,
            max_delay=max(self.retry_max_delay, self.retry_base_delay),
            jitter=self.jitter,
        )

    def _finalize_error(
        self,
        error: TransactionError,
        signature: Signature,
        attempts: List[SubmissionAttempt],
        state: SubmissionState,
        may_have_reached_network: Optional[bool] = None,
    ) -> TransactionError:
        if error.transaction_signature is None:
            error.transaction_signature = str(signature)
        if may_have_reached_network is not None:
            error.may_have_reached_network = may_have_reached_network
        # an earlier attempt was sent and may still land
        if len(attempts) > 1:
            error.may_have_reached_network = True
        error.final_state = state
        error.attempts = list(attempts)

        self.statistics.record_exception(error)
        self.statistics.record_submission(False, max(0, len(attempts) - 1))

        logger.error(
            "Transaction %s failed after %d attempt(s): %s (may have reached network: %s)",
            signature,
            len(attempts),
            error,
            error.may_have_reached_network,
        )
        return error

    async def submit(
        self,
        draft: DraftTransaction,
        signer: Signer,
        options: Optional[SubmitOptions] = None,
    ) -> Signature:
        report = await self.submit_with_report(draft, signer, options)
        return report.signature

    async def submit_with_report(
        self,
        draft: DraftTransaction,
        signer: Signer,
        options: Optional[SubmitOptions] = None,
    ) -> SubmissionReport:
        options = options or SubmitOptions()
        abort = options.abort_signal

        if abort is not None and abort.is_set():
            raise Cancelled("Submission aborted before signing", final_state=SubmissionState.CANCELLED)

        signed = await sign_draft(draft, signer)
        signature = signed.signature
        logger.debug("Signed transaction %s (%d instructions)", signature, draft.instruction_count)

        return await self.send_signed(signed, options)

    async def send_signed(
        self,
        signed: SignedTransaction,
        options: Optional[SubmitOptions] = None,
    ) -> SubmissionReport:
        """Drive already-signed bytes to confirmation."""
        options = options or SubmitOptions()
        abort = options.abort_signal
        signature = signed.signature
        retry_config = self._retry_config(options)
        attempts: List[SubmissionAttempt] = []

        loop = asyncio.get_running_loop()
        deadline = loop.time() + options.timeout
        attempt = 0

        while True:
            attempt += 1
            remaining = deadline - loop.time()

            if remaining <= 0:
                raise self._finalize_error(
                    ConfirmationTimeoutError(
                        f"Transaction confirmation timeout after {options.timeout}s",
                        confirmation_timeout=options.timeout,
                    ),
                    signature,
                    attempts,
                    SubmissionState.TIMED_OUT,
                    may_have_reached_network=bool(attempts),
                )

            bounded_by_budget = options.attempt_timeout is None or remaining <= options.attempt_timeout
            window = remaining if bounded_by_budget else options.attempt_timeout

            record = SubmissionAttempt(
                signature=signature,
                attempt=attempt,
                commitment=options.commitment,
                skip_preflight=options.skip_preflight,
            )
            attempts.append(record)

            logger.info(
                "Sending transaction %s (attempt %d/%d, commitment=%s, skip_preflight=%s)",
                signature,
                attempt,
                retry_config.max_retries + 1,
                options.commitment.value,
                options.skip_preflight,
            )

            try:
                await run_abortable(
                    asyncio.wait_for(
                        self.sender.send_and_confirm(signed, options.commitment, options.skip_preflight),
                        timeout=window,
                    ),
                    abort,
                    "send and confirm",
                )

            except Cancelled as e:
                record.finish(AttemptOutcome.CANCELLED, e)
                raise self._finalize_error(
                    e, signature, attempts, SubmissionState.CANCELLED, may_have_reached_network=True,
                )

            except (asyncio.TimeoutError, TimeoutError) as e:
                if bounded_by_budget:
                    record.finish(AttemptOutcome.TIMED_OUT, e)
                    raise self._finalize_error(
                        ConfirmationTimeoutError(
                            f"Transaction confirmation timeout after {options.timeout}s",
                            confirmation_timeout=options.timeout,
                        ),
                        signature,
                        attempts,
                        SubmissionState.TIMED_OUT,
                        may_have_reached_network=True,
                    ) from e
                last_error = TransportTransient(
                    f"Transaction not confirmed within {window:.1f}s",
                    may_have_reached_network=True,
                )
                record.finish(AttemptOutcome.TRANSIENT_FAILURE, last_error)

            except TransportTransient as e:
                e.may_have_reached_network = True
                record.finish(AttemptOutcome.TRANSIENT_FAILURE, e)
                last_error = e

            except LifetimeExpired as e:
                record.finish(AttemptOutcome.EXPIRED, e)
                raise self._finalize_error(e, signature, attempts, SubmissionState.EXPIRED)

            except SimulationRejected as e:
                record.finish(AttemptOutcome.REJECTED, e)
                raise self._finalize_error(e, signature, attempts, SubmissionState.REJECTED)

            except TransactionError as e:
                record.finish(AttemptOutcome.REJECTED, e)
                raise self._finalize_error(e, signature, attempts, SubmissionState.REJECTED)

            except Exception as e:
                record.finish(AttemptOutcome.REJECTED, e)
                raise self._finalize_error(
                    SubmissionFailed(
                        f"Unexpected error while sending transaction: {e}",
                        last_error=e,
                    ),
                    signature,
                    attempts,
                    SubmissionState.SENT,
                    may_have_reached_network=True,
                ) from e

            else:
                record.finish(AttemptOutcome.CONFIRMED)
                self.statistics.record_submission(True, attempt - 1)
                logger.info(
                    "Transaction %s reached %s after %d attempt(s)",
                    signature,
                    options.commitment.value,
                    attempt,
                )
                return SubmissionReport(
                    signature=signature,
                    state=SubmissionState.CONFIRMED,
                    attempts=attempts,
                )

            self.statistics.record_exception(last_error)

            if not should_retry(last_error, retry_config, attempt):
                raise self._finalize_error(
                    SubmissionFailed(
                        f"Transaction not confirmed after {attempt} attempt(s): {last_error.message}",
                        last_error=last_error,
                    ),
                    signature,
                    attempts,
                    SubmissionState.SENT,
                    may_have_reached_network=True,
                ) from last_error

            delay = min(
                self.strategy.get_delay(attempt, retry_config),
                max(0.0, deadline - loop.time()),
            )
            logger.warning(
                "Transaction %s attempt %d failed, resending same bytes in %.2fs: %s",
                signature,
                attempt,
                delay,
                last_error.message,
            )

            if delay > 0:
                try:
                    await run_abortable(asyncio.sleep(delay), abort, "retry backoff")
                except Cancelled as e:
                    raise self._finalize_error(
                        e, signature, attempts, SubmissionState.CANCELLED, may_have_reached_network=True,
                    )


__all__ = ["sign_draft", "SubmissionEngine"]
