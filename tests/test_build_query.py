from __future__ import annotations

import asyncio

import pytest

from factories import STORY, build_payload, make_context, record_payload
from visual_sync.graphql_client import GraphQLClientError
from visual_sync.models.revision import SelectedBuildInfo
from visual_sync.queries import build_query_variables
from visual_sync.services.build_query import BuildPoller, BuildQueryEngine, BuildQueryResult
from visual_sync.services.onboarding import OnboardingPreference
from visual_sync.utils.invariants import InvariantViolation


class TestQueryVariables:
    def test_latest_on_branch(self):
        variables = build_query_variables("p1", STORY, None, make_context())
        assert variables["hasStoryBuildId"] is False
        assert variables["storyBuildId"] == ""
        assert variables["branch"] == "main"
        assert variables["slug"] == "acme/widgets"

    def test_selected_build(self):
        selection = SelectedBuildInfo(story_id=STORY, build_id="b7")
        variables = build_query_variables("p1", STORY, selection, make_context(slug=None))
        assert variables["hasStoryBuildId"] is True
        assert variables["storyBuildId"] == "b7"
        assert "slug" not in variables


class TestBuildQueryEngine:
    @pytest.mark.asyncio
    async def test_latest_build_when_nothing_selected(self, graphql_client, service):
        service.last_build = build_payload("b2", tests_for_story=[record_payload("t1")])
        engine = BuildQueryEngine(graphql_client, "p1")

        result = await engine.fetch_build(None, make_context(), STORY)

        assert result.error is None
        assert result.build.id == "b2"
        assert result.last_build_on_branch.id == "b2"
        assert result.project.can_review is True
        assert result.story_id == STORY
        assert result.requested_build_id is None
        assert result.onboarding_preference == OnboardingPreference.COMPLETED

    @pytest.mark.asyncio
    async def test_selected_build_by_id(self, graphql_client, service):
        service.last_build = build_payload("b2")
        service.builds["b1"] = build_payload("b1", status="IN_PROGRESS")
        engine = BuildQueryEngine(graphql_client, "p1")

        result = await engine.fetch_build(SelectedBuildInfo(STORY, "b1"), make_context(), STORY)

        assert result.build.id == "b1"
        assert result.build.phase == "started"
        assert result.last_build_on_branch.id == "b2"
        assert result.requested_build_id == "b1"

    @pytest.mark.asyncio
    async def test_no_builds_yet(self, graphql_client, service):
        service.onboarding = None
        result = await BuildQueryEngine(graphql_client, "p1").fetch_build(None, make_context(), STORY)

        assert result.build is None
        assert result.has_data
        assert result.onboarding_preference is None

    @pytest.mark.asyncio
    async def test_transport_error_is_returned(self, graphql_client, service):
        service.fail_with = 502
        result = await BuildQueryEngine(graphql_client, "p1").fetch_build(None, make_context(), STORY)

        assert isinstance(result.error, GraphQLClientError)
        assert not result.has_data

    @pytest.mark.asyncio
    async def test_unexpected_shape_is_an_error(self, graphql_client, service):
        service.last_build = {"id": "b1", "status": "SOMETHING_NEW"}
        result = await BuildQueryEngine(graphql_client, "p1").fetch_build(None, make_context(), STORY)

        assert "Unexpected build payload" in str(result.error)


class ScriptedFetch:
    def __init__(self, results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class TestBuildPoller:
    @pytest.mark.asyncio
    async def test_errors_do_not_stop_polling(self):
        failure = BuildQueryResult(error=GraphQLClientError("down"))
        success = BuildQueryResult(story_id=STORY)
        received = []
        poller = BuildPoller(ScriptedFetch([failure, failure, success]), received.append, interval=0.01)

        poller.start()
        for _ in range(100):
            if len(received) >= 3:
                break
            await asyncio.sleep(0.01)
        await poller.stop()

        assert received[:3] == [failure, failure, success]
        assert not poller.running

    @pytest.mark.asyncio
    async def test_result_after_stop_is_discarded(self):
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_fetch():
            started.set()
            await release.wait()
            return BuildQueryResult(story_id=STORY)

        received = []
        poller = BuildPoller(slow_fetch, received.append, interval=60)
        poller.start()
        await started.wait()

        await poller.stop()
        release.set()
        await asyncio.sleep(0.01)

        assert received == []
        assert poller.ticks == 1

    @pytest.mark.asyncio
    async def test_stop_while_sleeping_cancels_timer(self):
        fetch = ScriptedFetch([BuildQueryResult()])
        received = []
        poller = BuildPoller(fetch, received.append, interval=60)

        poller.start()
        while not received:
            await asyncio.sleep(0)
        await poller.stop()

        assert fetch.calls == 1
        assert not poller.running

    @pytest.mark.asyncio
    async def test_refetch_runs_outside_interval(self):
        fetch = ScriptedFetch([BuildQueryResult()])
        received = []

        async def on_result(result):
            received.append(result)

        poller = BuildPoller(fetch, on_result, interval=60)
        await poller.refetch()

        assert fetch.calls == 1
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_malformed_response_does_not_stop_polling(self, graphql_client, service):
        service.last_build = build_payload("b1")
        service.raw_bodies["VisualTestsBuild"] = [None]
        engine = BuildQueryEngine(graphql_client, "p1")
        received = []

        async def fetch():
            return await engine.fetch_build(None, make_context(), STORY)

        poller = BuildPoller(fetch, received.append, interval=0.01)
        poller.start()
        for _ in range(100):
            if len(received) >= 2:
                break
            await asyncio.sleep(0.01)
        await poller.stop()

        assert isinstance(received[0].error, GraphQLClientError)
        assert received[1].error is None
        assert received[1].last_build_on_branch.id == "b1"

    @pytest.mark.asyncio
    async def test_tick_that_raises_is_retried(self):
        calls = []

        async def fetch():
            calls.append(len(calls))
            if len(calls) == 1:
                raise RuntimeError("unexpected")
            return BuildQueryResult(story_id=STORY)

        received = []
        poller = BuildPoller(fetch, received.append, interval=0.01)
        poller.start()
        for _ in range(100):
            if received:
                break
            await asyncio.sleep(0.01)
        await poller.stop()

        assert len(calls) >= 2
        assert received[0].story_id == STORY

    @pytest.mark.asyncio
    async def test_invariant_violation_stops_polling(self):
        async def fetch():
            raise InvariantViolation("selection lost")

        poller = BuildPoller(fetch, lambda result: None, interval=0.01)
        poller.start()
        for _ in range(100):
            if not poller.running:
                break
            await asyncio.sleep(0.01)

        assert not poller.running
        assert poller.ticks == 0
