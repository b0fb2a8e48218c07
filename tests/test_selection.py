from __future__ import annotations

from factories import OTHER_STORY, STORY, make_build, make_context, record_payload
from visual_sync.models.revision import SelectedBuildInfo
from visual_sync.services.selection import (
    OutdatedFlag,
    SelectionReconciler,
    SelectionState,
    is_outdated,
    is_ready,
    is_selectable,
    should_switch_to_last_build_on_branch,
)


class TestShouldSwitch:
    def test_equal_commit_time_switches(self):
        context = make_context(committed_at=1_000)
        assert should_switch_to_last_build_on_branch(make_build("b2", committed_at=1_000), context)

    def test_one_millisecond_newer_does_not_switch(self):
        context = make_context(committed_at=1_000)
        build = make_build("b2", committed_at=1_001)
        assert not is_selectable(build, context)
        assert not should_switch_to_last_build_on_branch(build, context)

    def test_queued_build_is_not_ready(self):
        build = make_build("b2", status="QUEUED")
        assert not is_ready(build)
        assert not should_switch_to_last_build_on_branch(build, make_context())

    def test_in_progress_build_ready_once_story_captured(self):
        captured = make_build("b2", status="IN_PROGRESS", tests_for_story=[record_payload("t1", result="CHANGED")])
        capturing = make_build("b3", status="IN_PROGRESS", tests_for_story=[record_payload("t1", result=None)])
        assert is_ready(captured, captured.tests_for_story)
        assert not is_ready(capturing, capturing.tests_for_story)
        assert not is_ready(captured, [])

    def test_failed_build_is_ready(self):
        assert is_ready(make_build("b2", status="FAILED"))


class TestOutdated:
    def test_matching_hash_is_current(self):
        context = make_context(uncommitted_hash="abc")
        assert not is_outdated(make_build("b1", uncommitted_hash="abc"), context)

    def test_other_hash_is_outdated(self):
        context = make_context(uncommitted_hash="abc")
        assert is_outdated(make_build("b1", uncommitted_hash="xyz"), context)

    def test_flag_publishes_on_change_only(self):
        published = []
        flag = OutdatedFlag(published.append)
        context = make_context(uncommitted_hash="abc")

        flag.update(make_build("b1", uncommitted_hash="abc"), context)
        flag.update(make_build("b2", uncommitted_hash="abc"), context)
        flag.update(make_build("b3", uncommitted_hash="xyz"), context)
        flag.update(None, context)

        assert published == [False, True, False]


class TestSelectionReconciler:
    def setup_method(self):
        self.reconciler = SelectionReconciler()
        self.context = make_context(committed_at=1_000)

    def test_starts_unselected(self):
        assert self.reconciler.state == SelectionState.UNSELECTED
        assert self.reconciler.reconcile(STORY, None, self.context) is None

    def test_selects_latest_once_known(self):
        selection = self.reconciler.reconcile(STORY, make_build("b1"), self.context)
        assert selection == SelectedBuildInfo(story_id=STORY, build_id="b1")
        assert self.reconciler.state == SelectionState.SELECTED_MATCHING_LATEST

    def test_story_change_never_carries_build_over(self):
        self.reconciler.reconcile(STORY, make_build("b1"), self.context)
        self.reconciler.pin(STORY, "b0")

        selection = self.reconciler.reconcile(OTHER_STORY, make_build("b1"), self.context)
        assert selection == SelectedBuildInfo(story_id=OTHER_STORY, build_id="b1")

    def test_story_change_without_latest_clears(self):
        self.reconciler.pin(STORY, "b0")
        assert self.reconciler.reconcile(OTHER_STORY, None, self.context) is None
        assert self.reconciler.state == SelectionState.UNSELECTED

    def test_pinned_switches_when_latest_is_safe(self):
        self.reconciler.reconcile(STORY, make_build("b1"), self.context)
        selection = self.reconciler.reconcile(STORY, make_build("b2", committed_at=1_000), self.context)
        assert selection.build_id == "b2"
        assert self.reconciler.state == SelectionState.SELECTED_MATCHING_LATEST

    def test_pinned_stays_when_latest_is_ahead_of_checkout(self):
        self.reconciler.reconcile(STORY, make_build("b1"), self.context)
        selection = self.reconciler.reconcile(STORY, make_build("b2", committed_at=1_001), self.context)
        assert selection.build_id == "b1"
        assert self.reconciler.state == SelectionState.SELECTED_PINNED

    def test_pinned_stays_while_latest_is_queued(self):
        self.reconciler.reconcile(STORY, make_build("b1"), self.context)
        selection = self.reconciler.reconcile(STORY, make_build("b2", status="QUEUED"), self.context)
        assert selection.build_id == "b1"

    def test_explicit_switch_needs_selectable_build(self):
        self.reconciler.reconcile(STORY, make_build("b1"), self.context)
        queued = make_build("b2", status="QUEUED")
        assert self.reconciler.switch_to_last_build_on_branch(STORY, queued, self.context) is True
        assert self.reconciler.selection.build_id == "b2"

        ahead = make_build("b3", committed_at=2_000)
        assert self.reconciler.switch_to_last_build_on_branch(STORY, ahead, self.context) is False
        assert self.reconciler.selection.build_id == "b2"

    def test_updates_replace_the_selection(self):
        first = self.reconciler.reconcile(STORY, make_build("b1"), self.context)
        self.reconciler.pin(STORY, "b0")
        assert first == SelectedBuildInfo(story_id=STORY, build_id="b1")
        assert self.reconciler.selection is not first
