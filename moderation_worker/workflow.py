"""
Durable step execution.

A step is one side-effecting unit of work with a key that is unique within
its job. Completed steps are journaled in the job store, so running the
same job again replays journaled results instead of repeating the work.
Steps are leaves: a step may not start another step.
"""

import asyncio
import inspect
import logging
from contextvars import ContextVar
from typing import Any, Callable, Dict, Optional

from .adapters.base import JobStore
from .exceptions import NestedStepError

logger = logging.getLogger("moderation_worker")

_current_step: ContextVar[Optional[str]] = ContextVar("current_step", default=None)


def current_step() -> Optional[str]:
    """Key of the step executing in this context, None outside steps"""
    return _current_step.get()


def _identity(value: Any) -> Any:
    return value


class StepRunner:
    """Runs, retries and journals the steps of one job"""

    def __init__(self, job_id: str, job_store: JobStore, max_attempts: int = 3,
                 backoff_ms: int = 500, backoff_multiplier: float = 1.5, max_backoff_ms: int = 12000):
        self.job_id = job_id
        self.job_store = job_store
        self.max_attempts = max(1, max_attempts)
        self.backoff_ms = backoff_ms
        self.backoff_multiplier = backoff_multiplier
        self.max_backoff_ms = max_backoff_ms
        self._journal: Dict[str, Any] = {}
        self._started: set = set()
        self.stats = {
            'executed': 0,
            'replayed': 0,
            'retries': 0
        }

    async def load(self) -> None:
        """Load the step journal of a resumed job"""
        self._journal = await asyncio.to_thread(self.job_store.get_steps, self.job_id)
        if self._journal:
            logger.info(f"Job {self.job_id}: resuming with {len(self._journal)} journaled steps")

    async def run(
        self,
        key: str,
        fn: Callable[..., Any],
        *args: Any,
        encode: Callable[[Any], Any] = _identity,
        decode: Callable[[Any], Any] = _identity,
        max_attempts: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """
        Run one step, or replay its journaled result.

        Args:
            key: Step key, unique within the job
            fn: Coroutine function, or plain function run in a worker thread
            encode: Converts the result into a JSON-serializable value
            decode: Converts a journaled value back into the result
            max_attempts: Overrides the runner's attempt limit for this step

        Returns:
            The step result
        """
        outer = _current_step.get()
        if outer is not None:
            raise NestedStepError(outer, key)

        if key in self._journal:
            self.stats['replayed'] += 1
            logger.debug(f"Job {self.job_id}: replaying step {key}")
            return decode(self._journal[key])

        if key in self._started:
            raise ValueError(f"Step key '{key}' used twice in job {self.job_id}")
        self._started.add(key)

        attempts = max(1, max_attempts or self.max_attempts)
        delay_ms = self.backoff_ms

        for attempt in range(1, attempts + 1):
            token = _current_step.set(key)
            try:
                if inspect.iscoroutinefunction(fn):
                    result = await fn(*args, **kwargs)
                else:
                    result = await asyncio.to_thread(fn, *args, **kwargs)
            except Exception as e:
                retryable = getattr(e, 'retryable', True)
                if not retryable or attempt >= attempts:
                    logger.error(f"Job {self.job_id}: step {key} failed after {attempt} attempt(s): {e}")
                    raise
                self.stats['retries'] += 1
                logger.warning(f"Job {self.job_id}: step {key} failed (attempt {attempt}/{attempts}): {e}")
                await asyncio.sleep(delay_ms / 1000.0)
                delay_ms = min(delay_ms * self.backoff_multiplier, self.max_backoff_ms)
                continue
            finally:
                _current_step.reset(token)

            encoded = encode(result)
            await asyncio.to_thread(self.job_store.record_step, self.job_id, key, encoded)
            self._journal[key] = encoded
            self.stats['executed'] += 1
            logger.debug(f"Job {self.job_id}: step {key} completed")
            return result
