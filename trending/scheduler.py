import asyncio
from typing import Awaitable, Callable, List, Optional

from trending.config import settings
from trending.models import Tier
from trending.utils.logging_config import logger


class PeriodicTask:
    """
    Named periodic task on a fixed cadence that never overlaps itself.

    A tick that finds the previous invocation still running is skipped. Errors from
    an invocation are logged and the cadence carries on.
    """

    def __init__(self, name: str, interval: float, action: Callable[[], Awaitable]):
        self.name = name
        self.interval = interval
        self.action = action
        self._current: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None
        self.runs = 0
        self.skipped = 0

    @property
    def is_running(self) -> bool:
        return self._current is not None and not self._current.done()

    def fire(self, action: Optional[Callable[[], Awaitable]] = None) -> bool:
        """Starts one invocation in the background. Returns False if it was skipped.

        `action` overrides the task body for this invocation only; it still shares
        the non-overlap guard.
        """
        if self.is_running:
            self.skipped += 1
            logger.info("Previous run still in progress, skipping tick", task=self.name)
            return False
        self._current = asyncio.create_task(
            self._invoke(action or self.action), name=f"{self.name}-run"
        )
        return True

    async def run_once(self, action: Optional[Callable[[], Awaitable]] = None) -> bool:
        """Runs one invocation and waits for it. Returns False if it was skipped."""
        if not self.fire(action):
            return False
        current = self._current
        await current
        return True

    async def _invoke(self, action: Callable[[], Awaitable]):
        self.runs += 1
        try:
            await action()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Periodic task failed", task=self.name, error=str(e), exc_info=True)

    async def _run_forever(self, initial_delay: float):
        if initial_delay:
            await asyncio.sleep(initial_delay)
        while True:
            self.fire()
            await asyncio.sleep(self.interval)

    def start(self, initial_delay: Optional[float] = None):
        if self._loop_task is not None:
            return
        delay = self.interval if initial_delay is None else initial_delay
        self._loop_task = asyncio.create_task(self._run_forever(delay), name=f"{self.name}-loop")

    async def stop(self):
        tasks = [t for t in (self._loop_task, self._current) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._current = None


class Scheduler:
    """
    Drives the on-chain cycle and the three staggered social cycles, plus a
    one-off catch-up of every tier shortly after start.
    """

    def __init__(self, service):
        self.service = service
        self.running = False
        self.onchain_task = PeriodicTask(
            "onchain", settings.ONCHAIN_CYCLE_SECONDS, service.run_onchain_cycle
        )
        self.social_tasks = {
            Tier.HIGH: PeriodicTask(
                "social-high", settings.SOCIAL_INTERVAL_HIGH_SECONDS,
                lambda: service.run_social_cycle(Tier.HIGH),
            ),
            Tier.MEDIUM: PeriodicTask(
                "social-medium", settings.SOCIAL_INTERVAL_MEDIUM_SECONDS,
                lambda: service.run_social_cycle(Tier.MEDIUM),
            ),
            Tier.LOW: PeriodicTask(
                "social-low", settings.SOCIAL_INTERVAL_LOW_SECONDS,
                lambda: service.run_social_cycle(Tier.LOW),
            ),
        }
        self._bootstrap_tasks: List[asyncio.Task] = []

    @property
    def tasks(self) -> List[PeriodicTask]:
        return [self.onchain_task, *self.social_tasks.values()]

    async def start(self):
        self.running = True
        self.onchain_task.start(initial_delay=0)
        for task in self.social_tasks.values():
            task.start()
        self._schedule_bootstrap()
        logger.info("Scheduler started.", tasks=[t.name for t in self.tasks])

    def _schedule_bootstrap(self):
        delays = settings.BOOTSTRAP_DELAYS_SECONDS
        plan = [
            (Tier.HIGH, delays[0], None),
            (Tier.MEDIUM, delays[1], None),
            (Tier.LOW, delays[2], settings.BOOTSTRAP_LOW_TIER_LIMIT),
        ]
        for tier, delay, end in plan:
            self._bootstrap_tasks.append(
                asyncio.create_task(self._bootstrap(tier, delay, end), name=f"bootstrap-{tier.value}")
            )

    async def _bootstrap(self, tier: Tier, delay: float, end: Optional[int]):
        await asyncio.sleep(delay)
        task = self.social_tasks[tier]
        logger.info("Bootstrap catch-up", tier=tier.value, end=end)
        if end is None:
            await task.run_once()
        else:
            await task.run_once(lambda: self.service.run_social_cycle(tier, end=end))

    async def stop(self):
        self.running = False
        for t in self._bootstrap_tasks:
            t.cancel()
        await asyncio.gather(*self._bootstrap_tasks, return_exceptions=True)
        self._bootstrap_tasks = []
        await asyncio.gather(*(task.stop() for task in self.tasks))
        logger.info("Scheduler stopped.")
