"""Start local builds on request and announce each one exactly once."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

from visual_sync.channel import Channel
from visual_sync.constants import BUILD_STARTED, START_BUILD
from visual_sync.logger import get_logger, log_failure, log_with_context

logger = get_logger()


@dataclass
class TaskUpdate:
    """Progress report from the build runner after one of its tasks completes."""

    title: str
    announced_build_id: str | None = None


TaskCallback = Callable[[TaskUpdate], None]
BuildRunner = Callable[[str | None, TaskCallback], Awaitable[None]]


class BuildTrigger:
    """Owns BUILD_STARTED on the channel and answers START_BUILD requests."""

    def __init__(self, channel: Channel, runner: BuildRunner, *, project_token: str | None = None) -> None:
        self._channel = channel
        self._runner = runner
        self._project_token = project_token
        self._triggers = 0
        self._announced: Dict[int, str] = {}
        channel.claim(BUILD_STARTED, self)
        self._off = channel.on(START_BUILD, self._on_start_build)

    @property
    def announced(self) -> Dict[int, str]:
        return dict(self._announced)

    def update_project_token(self, token: str | None) -> None:
        self._project_token = token

    async def _on_start_build(self, _payload: Any = None) -> None:
        await self.start_build()

    async def start_build(self) -> str | None:
        """Run one build; returns the announced build id, if the runner announced one."""

        self._triggers += 1
        trigger = self._triggers
        ctx_logger = log_with_context(logger, trigger=trigger)
        ctx_logger.info("Starting local build")

        def _on_task_complete(update: TaskUpdate) -> None:
            ctx_logger.debug(f"Completed build task {update.title!r}")
            if update.announced_build_id and trigger not in self._announced:
                self._announced[trigger] = update.announced_build_id
                self._channel.emit(BUILD_STARTED, update.announced_build_id, owner=self)

        try:
            await self._runner(self._project_token, _on_task_complete)
        except Exception as exc:
            log_failure(logger, "Local build failed", exc, trigger=trigger)
            raise
        return self._announced.get(trigger)

    def close(self) -> None:
        self._off()
        self._channel.release(BUILD_STARTED, self)
