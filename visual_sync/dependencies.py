"""FastAPI dependency factories and the process-wide panel state."""

from __future__ import annotations

import os
from collections import deque
from typing import Deque, Dict, Mapping

from fastapi import Depends, HTTPException

from visual_sync.channel import Channel
from visual_sync.config import Settings, SettingsError, get_settings
from visual_sync.graphql_client import GraphQLClient
from visual_sync.logger import get_logger
from visual_sync.models.revision import RevisionContext, StatusEntry, StatusUpdate
from visual_sync.services.build_trigger import BuildRunner, BuildTrigger
from visual_sync.services.visual_tests import Notification, VisualTestsSession
from visual_sync.session_state import MemoryStore, SessionState

logger = get_logger()

MAX_NOTIFICATIONS = 20


def settings_dependency() -> Settings:
    """Resolve application settings, surfacing configuration errors via HTTPException."""

    try:
        return get_settings()
    except SettingsError as exc:
        logger.error(f"Failed to load settings: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


class PanelState:
    """Everything one panel process shares: client, channel, statuses and the active session."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: GraphQLClient | None = None,
        env: Mapping[str, str] | None = None,
        build_runner: BuildRunner | None = None,
    ) -> None:
        self.settings = settings
        self.client = client or GraphQLClient(
            base_url=settings.normalized_base_url,
            access_token=settings.access_token,
            on_unauthorized=self._on_unauthorized,
        )
        self.channel = Channel()
        self.store = MemoryStore()
        self.session_state = SessionState(self.store, write_delay=settings.state_write_delay)
        self.statuses: Dict[str, StatusEntry] = {}
        self.notifications: Deque[Notification] = deque(maxlen=MAX_NOTIFICATIONS)
        self.session: VisualTestsSession | None = None
        self.build_trigger = BuildTrigger(self.channel, build_runner) if build_runner is not None else None
        self._env = env if env is not None else os.environ

    def _on_unauthorized(self) -> None:
        logger.warning("Access token was rejected; sign in again to resume syncing")

    def publish_status(self, update: StatusUpdate) -> None:
        for story_id, entry in update.items():
            if entry is None:
                self.statuses.pop(story_id, None)
            else:
                self.statuses[story_id] = entry

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    async def open_session(self, story_id: str) -> VisualTestsSession:
        """Switch the active session to ``story_id``, creating it on first use."""

        if self.session is not None:
            await self.session.set_story(story_id)
            return self.session

        project_id = self.settings.require_project_id()
        self.session = VisualTestsSession(
            client=self.client,
            project_id=project_id,
            context=RevisionContext.from_env(self._env),
            story_id=story_id,
            publish_status=self.publish_status,
            notify=self.notify,
            channel=self.channel,
            session_state=self.session_state,
            poll_interval=self.settings.poll_interval,
            onboarding_override=self.settings.onboarding_override,
        )
        await self.session.mount()
        return self.session

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None
        if self.build_trigger is not None:
            self.build_trigger.close()
        self.session_state.close()
        await self.client.aclose()


_panel_state: PanelState | None = None


def panel_state_dependency() -> PanelState:
    """Provide the process-wide panel state, building it from settings on first use."""

    global _panel_state
    if _panel_state is None:
        _panel_state = PanelState(settings_dependency())
    return _panel_state


def session_dependency(state: PanelState = Depends(panel_state_dependency)) -> VisualTestsSession:
    if state.session is None:
        raise HTTPException(status_code=409, detail="No story is open. POST a story id first.")
    return state.session


async def shutdown_panel_state() -> None:
    global _panel_state
    if _panel_state is not None:
        await _panel_state.close()
        _panel_state = None


def reset_panel_state() -> None:
    """Drop the cached panel state without closing it (primarily for tests)."""

    global _panel_state
    _panel_state = None
