"""Build Query Engine: decide which build to fetch, fetch it, and keep polling."""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from pydantic import ValidationError

from visual_sync.constants import POLL_INTERVAL_SECONDS
from visual_sync.graphql_client import GraphQLClient, GraphQLClientError
from visual_sync.logger import get_logger, log_failure, log_with_context
from visual_sync.models.build import Build, Project, parse_build
from visual_sync.models.revision import RevisionContext, SelectedBuildInfo
from visual_sync.queries import QUERY_BUILD, build_query_variables
from visual_sync.services.onboarding import OnboardingPreference
from visual_sync.utils.invariants import InvariantViolation

logger = get_logger()



@dataclass(frozen=True)
class BuildQueryResult:
    """One answer of the build query.

    ``build`` is the build the story is viewed on: the selected build when a
    build id was selected, otherwise the latest build on the branch.
    """

    build: Build | None = None
    last_build_on_branch: Build | None = None
    project: Project | None = None
    loading: bool = False
    error: GraphQLClientError | None = None
    onboarding_preference: OnboardingPreference | None = None
    requested_build_id: str | None = None
    story_id: str | None = None

    @property
    def has_data(self) -> bool:
        return self.project is not None


class BuildQueryEngine:
    def __init__(self, client: GraphQLClient, project_id: str) -> None:
        self._client = client
        self._project_id = project_id

    @property
    def project_id(self) -> str:
        return self._project_id

    async def fetch_build(
        self,
        selection: SelectedBuildInfo | None,
        context: RevisionContext,
        story_id: str,
    ) -> BuildQueryResult:
        variables = build_query_variables(self._project_id, story_id, selection, context)
        ctx_logger = log_with_context(
            logger, story_id=story_id, build_id=variables["storyBuildId"] or None, branch=context.branch
        )
        ctx_logger.debug(f"Fetching build (by_id={variables['hasStoryBuildId']})")

        requested_build_id = variables["storyBuildId"] or None
        result = await self._client.execute(QUERY_BUILD, variables, operation_name="VisualTestsBuild")
        if result.error is not None:
            return BuildQueryResult(error=result.error, requested_build_id=requested_build_id, story_id=story_id)

        data = result.data or {}
        try:
            project = Project.model_validate(data["project"]) if data.get("project") else None
            story_build = parse_build(data.get("storyBuild"))
        except (ValidationError, ValueError) as exc:
            log_failure(logger, "Build query returned an unexpected shape", exc, story_id=story_id)
            return BuildQueryResult(
                error=GraphQLClientError(f"Unexpected build payload: {exc}"),
                requested_build_id=requested_build_id,
                story_id=story_id,
            )

        last_build = project.last_build if project is not None else None
        build = story_build if variables["hasStoryBuildId"] else last_build
        ctx_logger.debug(
            f"Build query answered (build={build.id if build else None}, "
            f"last_build_on_branch={last_build.id if last_build else None})"
        )
        return BuildQueryResult(
            build=build,
            last_build_on_branch=last_build,
            project=project,
            onboarding_preference=_onboarding_preference(data),
            requested_build_id=requested_build_id,
            story_id=story_id,
        )


def _onboarding_preference(data: dict) -> OnboardingPreference | None:
    preferences = (data.get("viewer") or {}).get("preferences") or {}
    try:
        return OnboardingPreference(preferences.get("vtaOnboarding"))
    except ValueError:
        return None


FetchFunction = Callable[[], Awaitable[BuildQueryResult]]
ResultHandler = Callable[[BuildQueryResult], Awaitable[None] | None]


class BuildPoller:
    """Re-issues the build query on a fixed interval while started.

    ``start`` fetches immediately and then every ``interval`` seconds;
    ``stop`` cancels the timer. A fetch still in flight when the poller is
    stopped completes, but its result is dropped.
    """

    def __init__(
        self,
        fetch: FetchFunction,
        on_result: ResultHandler,
        *,
        interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self._fetch = fetch
        self._on_result = on_result
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self._generation = 0
        self._ticks = 0
        self._sleeping = False
        self._draining: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def ticks(self) -> int:
        return self._ticks

    def start(self) -> None:
        if self.running:
            return
        self._generation += 1
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._poll_loop(self._generation))
        self._task.add_done_callback(_log_task_failure)
        logger.debug(f"Build polling started (interval={self._interval}s)")

    async def stop(self) -> None:
        # Bumping the generation makes late results from this run stale.
        self._generation += 1
        if self._task is None:
            return
        task, self._task = self._task, None
        if not self._sleeping:
            # A fetch is in flight: let it finish; its result is discarded.
            self._draining.add(task)
            task.add_done_callback(self._draining.discard)
            logger.debug("Build polling stopped with a query in flight")
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:  # pragma: no cover - expected during shutdown
            pass
        logger.debug("Build polling stopped")

    async def refetch(self) -> None:
        """Run one query outside the interval, e.g. after a review was submitted."""

        await self._tick(self._generation)

    async def _poll_loop(self, generation: int) -> None:
        while generation == self._generation:
            try:
                await self._tick(generation)
            except InvariantViolation:
                raise
            except Exception as exc:
                log_failure(logger, "Build query tick failed, will retry on next tick", exc)
            if generation != self._generation:
                break
            self._sleeping = True
            try:
                await asyncio.sleep(self._interval)
            finally:
                self._sleeping = False

    async def _tick(self, generation: int) -> None:
        started = time.monotonic()
        result = await self._fetch()
        self._ticks += 1
        if generation != self._generation:
            logger.debug("Discarding build query result that arrived after polling stopped")
            return
        if result.error is not None:
            logger.warning(f"Build query failed, will retry on next tick: {result.error}")
        else:
            logger.trace(f"Build query tick took {time.monotonic() - started:.3f}s")
        outcome = self._on_result(result)
        if inspect.isawaitable(outcome):
            await outcome


def _log_task_failure(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log_failure(logger, "Build polling stopped unexpectedly", exc)
