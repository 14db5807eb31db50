"""周期任务基类。

每个 bot 在预热延迟后触发一次，之后按固定间隔触发；
上一次 tick 尚未结束时，本次触发直接跳过（busy 标志）。
tick 内的异常只记日志，不会中断循环。
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable

from shared.utils.logging import setup_logger

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PeriodicBot(ABC):
    name: str = "bot"

    def __init__(
        self,
        *,
        interval: float,
        initial_delay: float = 5.0,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ):
        self.interval = interval
        self.initial_delay = initial_delay
        self.clock = clock or utc_now
        self.logger = logger or setup_logger(f"bot-{self.name}")
        self.ticks = 0
        self.skipped = 0
        self._busy = False
        self._stopping = False
        self._loop_task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @abstractmethod
    async def tick(self, now: datetime) -> None:
        """一次轮询；单个品种的失败应在内部捕获并记录。"""

    async def run_once(self) -> bool:
        """执行一次 tick；正在运行时跳过并返回 False。"""
        if self._busy:
            self.skipped += 1
            self.logger.debug("%s tick skipped: previous tick still running", self.name)
            return False
        self._busy = True
        try:
            await self.tick(self.clock())
        except Exception:
            self.logger.exception("%s tick failed", self.name)
        finally:
            self._busy = False
            self.ticks += 1
        return True

    def _fire(self) -> None:
        task = asyncio.create_task(self.run_once())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _loop(self, max_ticks: int | None) -> None:
        await asyncio.sleep(self.initial_delay)
        fired = 0
        while not self._stopping:
            self._fire()
            fired += 1
            if max_ticks is not None and fired >= max_ticks:
                break
            await asyncio.sleep(self.interval)
        if self._inflight:
            await asyncio.gather(*list(self._inflight))

    def start(self, max_ticks: int | None = None) -> asyncio.Task:
        """在当前事件循环上启动定时器。"""
        if self.running:
            raise RuntimeError(f"{self.name} already running")
        self._stopping = False
        self.logger.info("%s started (interval %.0fs, warm-up %.0fs)", self.name, self.interval, self.initial_delay)
        self._loop_task = asyncio.create_task(self._loop(max_ticks), name=f"bot-{self.name}")
        return self._loop_task

    async def stop(self) -> None:
        """停止定时器；已开始的 tick 会执行完毕。"""
        self._stopping = True
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
        if self._inflight:
            await asyncio.gather(*list(self._inflight))
        self.logger.info("%s stopped after %d ticks (%d skipped)", self.name, self.ticks, self.skipped)

    async def wait(self) -> None:
        if self._loop_task is not None:
            await self._loop_task
