"""
Delay Queue - Deferred sends with cancellation tokens.

Stealth delays run for minutes. Awaiting them inside the webhook handler
would hold the request; scattering bare asyncio.sleep tasks would leave
orphaned sends behind on shutdown or when a rule is switched off. Every
deferred send goes through this queue instead:

    token = queue.schedule(240.0, send_reply, rule_id="rule-1")
    queue.cancel(token)          # one send
    queue.cancel_rule("rule-1")  # every pending send for a rule
    await queue.shutdown()       # everything, on process exit

Failures inside a scheduled job are logged, never propagated.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass
class _PendingJob:
    token: str
    label: str
    rule_id: str | None
    task: asyncio.Task = field(repr=False)


class DelayQueue:
    """Tracks deferred coroutines so they can be cancelled or awaited."""

    def __init__(self, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> None:
        self._sleep = sleep
        self._jobs: dict[str, _PendingJob] = {}
        self._closed = False

    def __len__(self) -> int:
        return len(self._jobs)

    def schedule(
        self,
        delay_seconds: float,
        job: Callable[[], Awaitable[Any]],
        rule_id: str | None = None,
        label: str = "job",
    ) -> str:
        """
        Run `job()` after `delay_seconds`.

        Args:
            delay_seconds: Wait before running the job.
            job: Zero-argument coroutine function.
            rule_id: Rule the job belongs to, for cancel_rule().
            label: Short description for logs.

        Returns:
            Cancellation token.

        Raises:
            RuntimeError: If the queue has been shut down.
        """
        if self._closed:
            raise RuntimeError("DelayQueue is shut down")

        token = uuid.uuid4().hex
        task = asyncio.create_task(self._run(token, delay_seconds, job, label))
        self._jobs[token] = _PendingJob(token=token, label=label, rule_id=rule_id, task=task)
        logger.debug(f"Scheduled {label} in {delay_seconds:.1f}s (token {token[:8]})")
        return token

    async def _run(
        self,
        token: str,
        delay_seconds: float,
        job: Callable[[], Awaitable[Any]],
        label: str,
    ) -> None:
        try:
            if delay_seconds > 0:
                await self._sleep(delay_seconds)
            await job()
        except asyncio.CancelledError:
            logger.info(f"Cancelled {label} (token {token[:8]})")
            raise
        except Exception as e:
            logger.error(f"Scheduled {label} failed: {e}")
        finally:
            self._jobs.pop(token, None)

    def cancel(self, token: str) -> bool:
        job = self._jobs.pop(token, None)
        if job is None:
            return False
        job.task.cancel()
        return True

    def cancel_rule(self, rule_id: str) -> int:
        tokens = [t for t, job in self._jobs.items() if job.rule_id == rule_id]
        for token in tokens:
            self.cancel(token)
        if tokens:
            logger.info(f"Cancelled {len(tokens)} pending sends for rule {rule_id}")
        return len(tokens)

    async def join(self) -> None:
        """Wait until every job scheduled so far has finished."""
        while self._jobs:
            tasks = [job.task for job in list(self._jobs.values())]
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every pending job and refuse new ones."""
        self._closed = True
        tasks = [job.task for job in self._jobs.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Delay queue shutdown, cancelled {len(tasks)} pending jobs")
            await asyncio.gather(*tasks, return_exceptions=True)
        self._jobs.clear()
