"""
Cross-shard write coordination with compensations (Saga pattern).

Each step is a local transaction on one shard. Steps run strictly in order;
the first failure stops the saga and leaves completed steps in place until
``rollback`` runs their compensations in reverse order.

There is no persisted saga log: a crash between steps leaves partial state
that nothing reconciles automatically.

Example usage:
    saga = SagaCoordinator("create_identity")
    saga.prepare(email_engine, insert_email, compensation=delete_email)
    saga.prepare(user_engine, insert_user)  # last step, no compensation
    try:
        await saga.commit()
    except Exception:
        await saga.rollback()
        raise
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from src.identity.core.logging import get_logger

logger = get_logger(__name__)

type StepFn = Callable[[AsyncConnection], Awaitable[None]]


@dataclass
class SagaStep:
    engine: AsyncEngine
    action: StepFn
    compensation: StepFn | None = None
    done: bool = False


class SagaCoordinator:
    """Ordered list of shard-local steps with optional undo actions.

    Only the final step may omit its compensation, since nothing after it can
    fail and require it to be undone.
    """

    def __init__(self, name: str, deadline: float | None = None):
        self.name = name
        # Absolute time on the running loop's clock (loop.time())
        self.deadline = deadline
        self.steps: list[SagaStep] = []

    def prepare(
        self,
        engine: AsyncEngine,
        action: StepFn,
        compensation: StepFn | None = None,
    ) -> None:
        """Append a step. Nothing runs until ``commit``."""
        if self.steps and self.steps[-1].compensation is None:
            raise ValueError(
                f"Saga '{self.name}': only the last step may omit its compensation"
            )
        self.steps.append(SagaStep(engine=engine, action=action, compensation=compensation))

    @property
    def completed_steps(self) -> list[int]:
        return [i for i, step in enumerate(self.steps) if step.done]

    def _check_deadline(self, index: int) -> None:
        if self.deadline is None:
            return
        if asyncio.get_running_loop().time() >= self.deadline:
            logger.warning("Saga deadline exceeded", saga=self.name, step=index)
            raise TimeoutError(f"Saga '{self.name}' deadline exceeded before step {index}")

    async def commit(self) -> None:
        """Run every step in order, stopping at the first failure.

        A step counts as done only once its action returned and its local
        transaction committed. The failure (including cancellation) propagates
        unchanged.
        """
        for index, step in enumerate(self.steps):
            self._check_deadline(index)
            async with step.engine.begin() as conn:
                await step.action(conn)
            step.done = True
            logger.debug("Saga step committed", saga=self.name, step=index)

    async def rollback(self) -> list[Exception]:
        """Compensate completed steps in reverse order.

        Compensation failures are logged, never retried, and returned so the
        caller can report them alongside the original error.
        """
        errors: list[Exception] = []
        for index in reversed(self.completed_steps):
            step = self.steps[index]
            if step.compensation is None:
                continue
            try:
                async with step.engine.begin() as conn:
                    await step.compensation(conn)
                step.done = False
                logger.info("Saga step compensated", saga=self.name, step=index)
            except Exception as e:
                logger.error(
                    "Saga compensation failed",
                    saga=self.name,
                    step=index,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                errors.append(e)
        return errors
