"""Rollout controller — drives a service from request to terminal outcome.

The controller wires a ``PlatformClient`` to the ``RolloutHistory``.  For
each request it captures the service's last stable artifact, issues the
image update with bounded retries, polls health until convergence or
timeout, rolls back when allowed, and appends exactly one terminal record.

Only clearly invalid input fails synchronously (unknown service, malformed
artifact, a different rollout already in flight for the service).  Every
other failure is resolved into the record's outcome.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TypeVar

from rollwright.config import RolloutSettings
from rollwright.core.clock import Clock
from rollwright.core.history import RolloutHistory
from rollwright.core.production_guard import enforce_production_constraints
from rollwright.models.artifacts import ArtifactRef
from rollwright.models.rollout import RolloutOptions, RolloutOutcome, RolloutRecord
from rollwright.platform import (
    InvalidArtifactError,
    PlatformClient,
    PlatformError,
    ServiceNotFoundError,
    TransientUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LOG_LEVELS: dict[RolloutOutcome, int] = {
    RolloutOutcome.SUCCEEDED: logging.INFO,
    RolloutOutcome.ROLLED_BACK: logging.WARNING,
    RolloutOutcome.FAILED: logging.ERROR,
}


class RolloutInProgressError(RuntimeError):
    """Raised when a service already has an in-flight rollout to a different target."""


class HealthTimeout(Exception):
    """Convergence window elapsed or was cancelled.  Never leaves the controller."""


class _ActiveRollout:
    """Controller-owned slot for the one in-flight rollout of a service."""

    def __init__(self, record: RolloutRecord) -> None:
        self.record = record
        self.cancel = threading.Event()
        self.future: Future[RolloutRecord] = Future()
        self.future.set_running_or_notify_cancel()


class RolloutController:
    """Runs rollouts against a platform and records their outcomes.

    Parameters
    ----------
    platform:
        The container platform binding.
    history:
        Where finalized records are appended.
    settings:
        Source of default ``RolloutOptions`` and concurrency limits.  The
        production guard runs against it at construction.
    clock:
        Time source for polling and backoff.  Defaults to the wall clock.
    """

    def __init__(
        self,
        platform: PlatformClient,
        history: RolloutHistory,
        *,
        settings: RolloutSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings or RolloutSettings()
        enforce_production_constraints(self._settings)

        self.platform = platform
        self.history = history
        self._clock = clock or Clock()

        self._lock = threading.Lock()
        self._active: dict[str, _ActiveRollout] = {}
        self._executor: ThreadPoolExecutor | None = None

    def __enter__(self) -> RolloutController:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def default_options(self) -> RolloutOptions:
        return self._settings.rollout_options()

    def start(
        self,
        service_id: str,
        target: ArtifactRef,
        options: RolloutOptions | None = None,
    ) -> RolloutRecord:
        """Roll *service_id* out to *target* and block until a terminal outcome.

        If a rollout of the same target is already in flight for the
        service, its pending record is returned immediately instead.  That
        record is only persisted if the first call gets past its state
        read; if the service turns out to be unknown, its id never reaches
        the history.

        Raises
        ------
        ServiceNotFoundError
            If the platform does not know *service_id*.
        RolloutInProgressError
            If a rollout to a different target is in flight for the service.
        """
        options = options or self.default_options()
        active, created = self._claim(service_id, target)
        if not created:
            logger.info(
                "Rollout %s of %s to %s already in flight; returning it.",
                active.record.id, service_id, target,
            )
            return active.record

        finished = self._prepare(active, options)
        if finished is not None:
            return finished
        return self._execute(active, options)

    def submit(
        self,
        service_id: str,
        target: ArtifactRef,
        options: RolloutOptions | None = None,
    ) -> Future[RolloutRecord]:
        """Start a rollout on the worker pool and return a future for its record.

        Validation happens in the caller's thread, so the same synchronous
        errors as ``start`` are raised here.  A duplicate submission returns
        the in-flight rollout's future.
        """
        options = options or self.default_options()
        active, created = self._claim(service_id, target)
        if not created:
            return active.future

        if self._prepare(active, options) is None:
            self._pool().submit(self._execute, active, options)
        return active.future

    def get(self, record_id: str) -> RolloutRecord:
        """Return the active or finalized record with *record_id*.

        Raises ``RecordNotFoundError`` if it is neither.
        """
        with self._lock:
            for active in self._active.values():
                if active.record.id == record_id:
                    return active.record
        return self.history.get(record_id)

    def active(self, service_id: str) -> RolloutRecord | None:
        """The pending record of *service_id*'s in-flight rollout, if any."""
        with self._lock:
            active = self._active.get(service_id)
            return active.record if active is not None else None

    def cancel(self, service_id: str) -> bool:
        """Stop waiting for *service_id* to converge.

        Also cuts short the backoff between retries of the state read and
        the target update.  A cancelled convergence wait takes the timeout
        branch (rollback or fail); cancelled retries fail the rollout.  The
        rollback itself is never cancelled.  Returns False if nothing was in
        flight.
        """
        with self._lock:
            active = self._active.get(service_id)
        if active is None:
            return False
        logger.warning("Cancelling rollout %s of %s.", active.record.id, service_id)
        active.cancel.set()
        return True

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._settings.max_concurrent_rollouts,
                    thread_name_prefix="rollout",
                )
            return self._executor

    def _claim(self, service_id: str, target: ArtifactRef) -> tuple[_ActiveRollout, bool]:
        """Take the service's active slot, or return the rollout holding it."""
        with self._lock:
            existing = self._active.get(service_id)
            if existing is not None:
                if existing.record.target == target:
                    return existing, False
                raise RolloutInProgressError(
                    f"{service_id} is already rolling out to {existing.record.target} "
                    f"(rollout {existing.record.id}); refusing {target}"
                )
            active = _ActiveRollout(RolloutRecord(service_id=service_id, target=target))
            self._active[service_id] = active
        logger.info("Rollout %s: %s -> %s started.", active.record.id, service_id, target)
        return active, True

    def _release(self, active: _ActiveRollout) -> None:
        with self._lock:
            if self._active.get(active.record.service_id) is active:
                del self._active[active.record.service_id]

    def _prepare(self, active: _ActiveRollout, options: RolloutOptions) -> RolloutRecord | None:
        """Capture the last stable artifact before anything is mutated.

        Returns the finalized record if the rollout ended here, else None.
        """
        service_id = active.record.service_id
        try:
            state = self._with_retry(
                lambda: self.platform.get_service_state(service_id),
                options,
                what="state read",
                service_id=service_id,
                cancel=active.cancel,
            )
        except ServiceNotFoundError as exc:
            self._release(active)
            active.future.set_exception(exc)
            raise
        except TransientUnavailableError as exc:
            if active.cancel.is_set():
                detail = f"state read cancelled during retries: {exc}"
            else:
                detail = f"could not read service state after {options.max_retries} retries: {exc}"
            return self._finalize(active, RolloutOutcome.FAILED, detail)
        except PlatformError as exc:
            return self._finalize(
                active, RolloutOutcome.FAILED, f"could not read service state: {exc}"
            )

        with self._lock:
            active.record = active.record.model_copy(
                update={"previous_artifact": state.last_stable_artifact}
            )
        logger.debug(
            "Rollout %s: last stable artifact of %s is %s.",
            active.record.id, service_id, state.last_stable_artifact,
        )
        return None

    def _execute(self, active: _ActiveRollout, options: RolloutOptions) -> RolloutRecord:
        try:
            outcome, detail = self._roll(active, options)
        except Exception as exc:
            logger.exception("Rollout %s crashed.", active.record.id)
            self._finalize(active, RolloutOutcome.FAILED, f"unexpected error: {exc}")
            raise
        return self._finalize(active, outcome, detail)

    def _finalize(
        self, active: _ActiveRollout, outcome: RolloutOutcome, detail: str
    ) -> RolloutRecord:
        """The single transition into a terminal outcome."""
        final = active.record.finalize(outcome, detail)
        try:
            sealed = self.history.append(final)
        except Exception as exc:
            self._release(active)
            active.future.set_exception(exc)
            raise
        self._release(active)

        logger.log(
            _LOG_LEVELS[outcome],
            "Rollout %s of %s to %s finished: %s (%d attempt(s)). %s",
            sealed.id, sealed.service_id, sealed.target,
            sealed.outcome.value, sealed.attempts, detail,
        )
        active.future.set_result(sealed)
        return sealed

    # ------------------------------------------------------------------
    # Rollout algorithm
    # ------------------------------------------------------------------

    def _roll(self, active: _ActiveRollout, options: RolloutOptions) -> tuple[RolloutOutcome, str]:
        target = active.record.target
        try:
            self._update(active, target, options, count_attempts=True)
        except InvalidArtifactError as exc:
            return RolloutOutcome.FAILED, f"platform rejected {target}: {exc}"
        except TransientUnavailableError as exc:
            if active.cancel.is_set():
                return RolloutOutcome.FAILED, f"update to {target} cancelled during retries: {exc}"
            return (
                RolloutOutcome.FAILED,
                f"update to {target} failed after {options.max_retries} retries: {exc}",
            )
        except PlatformError as exc:
            return RolloutOutcome.FAILED, f"update to {target} failed: {exc}"

        try:
            self._await_convergence(active, target, options.health_timeout, options, active.cancel)
        except HealthTimeout as timeout:
            return self._rollback(active, options, str(timeout))
        except PlatformError as exc:
            return RolloutOutcome.FAILED, f"health polling failed: {exc}"
        return RolloutOutcome.SUCCEEDED, f"converged on {target}"

    def _rollback(
        self, active: _ActiveRollout, options: RolloutOptions, reason: str
    ) -> tuple[RolloutOutcome, str]:
        target = active.record.target
        previous = active.record.previous_artifact

        if not options.auto_rollback:
            return RolloutOutcome.FAILED, f"{reason}; auto-rollback disabled"
        if previous is None:
            return RolloutOutcome.FAILED, f"{reason}; no stable artifact to roll back to"
        if previous == target:
            return RolloutOutcome.FAILED, f"{reason}; last stable artifact is the target itself"

        logger.warning(
            "Rollout %s: %s. Rolling %s back to %s.",
            active.record.id, reason, active.record.service_id, previous,
        )
        try:
            self._update(active, previous, options, count_attempts=False)
        except PlatformError as exc:
            return RolloutOutcome.FAILED, f"{reason}; rollback to {previous} failed: {exc}"

        try:
            # Rollback gets its own window; cancelling the rollout does not cut it short.
            self._await_convergence(
                active, previous, options.effective_rollback_timeout, options, threading.Event()
            )
        except HealthTimeout as timeout:
            return RolloutOutcome.FAILED, f"{reason}; rollback to {previous} failed: {timeout}"
        except PlatformError as exc:
            return RolloutOutcome.FAILED, f"{reason}; health polling failed during rollback: {exc}"
        return RolloutOutcome.ROLLED_BACK, f"{reason}; rolled back to {previous}"

    def _update(
        self,
        active: _ActiveRollout,
        artifact: ArtifactRef,
        options: RolloutOptions,
        *,
        count_attempts: bool,
    ) -> None:
        service_id = active.record.service_id

        def call() -> None:
            if count_attempts:
                with self._lock:
                    active.record = active.record.with_attempts(active.record.attempts + 1)
            self.platform.update_desired_image(service_id, artifact)

        self._with_retry(
            call,
            options,
            what=f"update to {artifact}",
            service_id=service_id,
            cancel=active.cancel if count_attempts else None,
        )
        logger.info("Rollout %s: update to %s accepted.", active.record.id, artifact)

    def _with_retry(
        self,
        fn: Callable[[], T],
        options: RolloutOptions,
        *,
        what: str,
        service_id: str,
        cancel: threading.Event | None = None,
    ) -> T:
        """Call *fn*, retrying ``TransientUnavailableError`` with exponential backoff.

        Setting *cancel* ends the backoff early and re-raises the last error.
        """
        delays = options.backoff_delays()
        retry = 0
        while True:
            try:
                return fn()
            except TransientUnavailableError as exc:
                if retry >= len(delays):
                    raise
                delay = delays[retry]
                retry += 1
                logger.warning(
                    "%s: %s unavailable (%s); retry %d/%d in %.1fs.",
                    service_id, what, exc, retry, len(delays), delay,
                )
                if self._clock.sleep(delay, cancel):
                    logger.warning("%s: %s retries cancelled.", service_id, what)
                    raise

    def _await_convergence(
        self,
        active: _ActiveRollout,
        artifact: ArtifactRef,
        timeout: float,
        options: RolloutOptions,
        cancel: threading.Event,
    ) -> None:
        """Poll until *artifact* has converged.

        Raises ``HealthTimeout`` when *timeout* elapses or *cancel* is set.
        A transiently unavailable health endpoint counts as a missed poll.
        """
        service_id = active.record.service_id
        deadline = self._clock.now() + timeout
        while True:
            try:
                report = self.platform.poll_health(service_id)
            except TransientUnavailableError as exc:
                logger.warning("%s: health poll unavailable (%s).", service_id, exc)
            else:
                if report.converged_on(artifact):
                    logger.info(
                        "%s converged on %s (%d/%d healthy).",
                        service_id, artifact, report.healthy_count, report.desired_count,
                    )
                    return
                logger.debug(
                    "%s: %d/%d healthy on %s.",
                    service_id, report.healthy_count, report.desired_count,
                    report.current_artifact,
                )

            remaining = deadline - self._clock.now()
            if remaining <= 0:
                raise HealthTimeout(f"{artifact} did not converge within {timeout:g}s")
            if self._clock.wait(cancel, min(options.poll_interval, remaining)):
                raise HealthTimeout(f"convergence on {artifact} was cancelled")
