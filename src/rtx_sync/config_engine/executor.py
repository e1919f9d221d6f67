"""Executor for applying change operations to a device.

Turns an ordered operation list into a command plan, sends it over the
remote shell, retries transient failures with the remaining lines, stops at
the first refused line and persists the configuration once at the end.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ..devices.base import RemoteShell
from ..utils.audit_log import ChangeTracker
from ..utils.connection import RETRYABLE_EXCEPTIONS, retrying
from .errors import CommandRejectedError, PartialApplyError, TransientIOError
from .generator import CommandBuilder
from .schema import ChangeOp, CommandPlan, ExecuteOptions, ExecuteResult

logger = logging.getLogger(__name__)

# Failures that leave the device in a known state and may be retried
TRANSIENT_ERRORS = (TransientIOError, asyncio.TimeoutError) + RETRYABLE_EXCEPTIONS


@dataclass
class _Progress:
    """Lines of the plan the device is known to have completed."""
    completed: int = 0
    cancelled: bool = False


class ConfigExecutor:
    """Apply change operations through a remote shell."""

    def __init__(
        self,
        shell: RemoteShell,
        builder: CommandBuilder,
        tracker: Optional[ChangeTracker] = None,
    ):
        """
        Initialize executor.

        Args:
            shell: Session to the device
            builder: Command builder for the device grammar
            tracker: Audit tracker (default: one for ``shell.device_id``)
        """
        self.shell = shell
        self.builder = builder
        self.tracker = tracker or ChangeTracker(shell.device_id)

    async def apply(self, ops: list[ChangeOp], options: Optional[ExecuteOptions] = None) -> ExecuteResult:
        """
        Apply operations in order.

        Args:
            ops: Ordered change operations from the reconciler
            options: Execution options (dry_run, batching, retries, ...)

        Returns:
            ExecuteResult. A refused line or a cancellation is reported in
            ``result.error`` with the executed and pending operations.

        Raises:
            TransientIOError: When retries are exhausted
        """
        options = options or ExecuteOptions()
        plan = self.builder.plan(ops, save_config=options.save_config)
        result = ExecuteResult(dry_run=options.dry_run)

        if options.dry_run:
            result.success = True
            result.commands_executed = [f"[DRY-RUN] {line}" for line in plan.lines]
            result.pending_ops = list(plan.ops)
            self._audit(plan, result, options)
            return result

        if not plan.commands:
            logger.info(f"Nothing to send to {self.shell.device_id}")
            result.success = True
            result.executed_ops = list(plan.ops)
            return result

        progress = _Progress()
        try:
            await self._send_with_retry(plan, progress, options, result)
        except CommandRejectedError as e:
            self._reject(plan, progress, e, result)
        except TRANSIENT_ERRORS as e:
            self._record_progress(plan, progress, result)
            error = self._exhausted(plan, progress, e, result.attempts)
            result.error = error
            self._audit(plan, result, options)
            raise error from e

        if result.error is None and progress.cancelled:
            self._record_progress(plan, progress, result)
            result.error = self._cancelled(plan, progress, result)

        if result.error is None:
            result.commands_executed = list(plan.lines)
            result.executed_ops = list(plan.ops)
            result.success = True
            if plan.save_config:
                await self._save(result, options)

        self._audit(plan, result, options)
        return result

    async def _send_with_retry(
        self,
        plan: CommandPlan,
        progress: _Progress,
        options: ExecuteOptions,
        result: ExecuteResult,
    ) -> None:
        """Send the remaining lines, resuming after the last completed one."""
        async for attempt in retrying(
            max_attempts=options.max_attempts,
            min_wait=options.min_wait,
            max_wait=options.max_wait,
            exceptions=TRANSIENT_ERRORS,
        ):
            with attempt:
                result.attempts += 1
                if result.attempts > 1:
                    logger.warning(
                        f"Retrying {self.shell.device_id} from line {progress.completed + 1}"
                        f"/{plan.total_commands} (attempt {result.attempts})"
                    )
                try:
                    if self._use_batch(options):
                        await self._send_batch(plan.lines, progress, options)
                    else:
                        await self._send_lines(plan.lines, progress, options)
                except TRANSIENT_ERRORS as e:
                    if not progress.cancelled:
                        raise
                    logger.warning(f"Session to {self.shell.device_id} failed after cancellation: {e}")
                    return

    def _use_batch(self, options: ExecuteOptions) -> bool:
        # Cancellation is only honored between lines
        return options.batch and self.shell.supports_batch and options.cancel_event is None

    async def _send_batch(self, lines: list[str], progress: _Progress, options: ExecuteOptions) -> None:
        remaining = lines[progress.completed:]
        timeout = options.timeout * len(remaining)
        logger.info(f"Sending {len(remaining)} line(s) to {self.shell.device_id} as one batch")

        task = asyncio.ensure_future(
            asyncio.wait_for(self.shell.run_batch(remaining, options.timeout), timeout=timeout)
        )
        try:
            await self._finish_in_flight(task, progress)
        except TransientIOError as e:
            progress.completed += e.completed
            raise
        except CommandRejectedError as e:
            progress.completed += e.index or 0
            raise
        progress.completed = len(lines)

    async def _send_lines(self, lines: list[str], progress: _Progress, options: ExecuteOptions) -> None:
        while progress.completed < len(lines):
            if options.cancel_event is not None and options.cancel_event.is_set():
                progress.cancelled = True
                return
            line = lines[progress.completed]
            task = asyncio.ensure_future(
                asyncio.wait_for(self.shell.run_one(line, options.timeout), timeout=options.timeout)
            )
            await self._finish_in_flight(task, progress)
            progress.completed += 1
            if progress.cancelled:
                return

    async def _finish_in_flight(self, task: asyncio.Future, progress: _Progress) -> None:
        """Wait for a round trip; a cancelled caller still lets it complete."""
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise
            logger.warning(f"Cancelled while a command was in flight on {self.shell.device_id}")
            progress.cancelled = True
            await task

    def _reject(
        self,
        plan: CommandPlan,
        progress: _Progress,
        error: CommandRejectedError,
        result: ExecuteResult,
    ) -> None:
        index = progress.completed
        command = plan.commands[index] if index < plan.total_commands else plan.commands[-1]
        op = plan.ops[command.op_index]

        error.kind = op.kind
        error.identity = op.identity
        error.command = command.line
        error.index = index
        error.executed_ops, error.pending_ops = plan.ops_completed(index)

        logger.error(
            f"{self.shell.device_id} refused line {index + 1}/{plan.total_commands} "
            f"({op.describe()}): {error.message}"
        )
        self._record_progress(plan, progress, result)
        result.error = error

    def _record_progress(self, plan: CommandPlan, progress: _Progress, result: ExecuteResult) -> None:
        result.commands_executed = plan.lines[:progress.completed]
        result.executed_ops, result.pending_ops = plan.ops_completed(progress.completed)

    def _exhausted(
        self,
        plan: CommandPlan,
        progress: _Progress,
        cause: BaseException,
        attempts: int,
    ) -> TransientIOError:
        index = min(progress.completed, plan.total_commands - 1)
        command = plan.commands[index]
        op = plan.ops[command.op_index]
        logger.error(
            f"Giving up on {self.shell.device_id} after {attempts} attempt(s) "
            f"at line {progress.completed + 1}/{plan.total_commands}: {cause!r}"
        )
        return TransientIOError(
            f"Retries exhausted after {attempts} attempt(s): {cause}",
            kind=op.kind,
            identity=op.identity,
            command=command.line,
            completed=progress.completed,
        )

    def _cancelled(self, plan: CommandPlan, progress: _Progress, result: ExecuteResult) -> PartialApplyError:
        error = PartialApplyError(
            f"Cancelled after {progress.completed} of {plan.total_commands} line(s)",
        )
        error.executed_ops = list(result.executed_ops)
        error.pending_ops = list(result.pending_ops)
        if error.pending_ops:
            error.kind = error.pending_ops[0].kind
            error.identity = error.pending_ops[0].identity
        if progress.completed < plan.total_commands:
            error.command = plan.lines[progress.completed]
        logger.warning(f"{self.shell.device_id}: {error.message}")
        return error

    async def save(self, options: Optional[ExecuteOptions] = None) -> ExecuteResult:
        """
        Persist the running configuration on its own.

        Used when several batches were applied with ``save_config=False``.

        Raises:
            TransientIOError: When retries are exhausted
        """
        options = options or ExecuteOptions()
        result = ExecuteResult(success=True)
        await self._save(result, options)
        self.tracker.log_change(
            operation="save",
            parameters={"context": options.audit_context},
            success=result.success,
            error=str(result.error) if result.error else None,
            user=options.user,
        )
        return result

    async def _save(self, result: ExecuteResult, options: ExecuteOptions) -> None:
        """Persist the running configuration once."""
        try:
            async for attempt in retrying(
                max_attempts=options.max_attempts,
                min_wait=options.min_wait,
                max_wait=options.max_wait,
                exceptions=TRANSIENT_ERRORS,
            ):
                with attempt:
                    await asyncio.wait_for(self.shell.save(), timeout=max(options.timeout, 60))
        except CommandRejectedError as e:
            logger.error(f"Saving configuration on {self.shell.device_id} failed: {e.message}")
            e.command = e.command or "save"
            result.error = e
            result.success = False
            return
        except TRANSIENT_ERRORS as e:
            raise TransientIOError(
                f"Saving configuration on {self.shell.device_id} failed: {e}",
                command="save",
            ) from e
        result.saved = True
        logger.info(f"Saved configuration on {self.shell.device_id}")

    def _audit(self, plan: CommandPlan, result: ExecuteResult, options: ExecuteOptions) -> None:
        self.tracker.log_change(
            operation="apply",
            parameters={
                "context": options.audit_context,
                "ops": [op.describe() for op in plan.ops],
                "commands": plan.lines,
                "attempts": result.attempts,
                "saved": result.saved,
            },
            success=result.success,
            error=str(result.error) if result.error else None,
            dry_run=options.dry_run,
            before_state={"entities": [op.before.to_dict() for op in plan.ops if op.before is not None]},
            after_state={"entities": [op.after.to_dict() for op in plan.ops if op.after is not None]},
            user=options.user,
        )
