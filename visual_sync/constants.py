"""Shared names for channel events, storage keys and timings."""

from __future__ import annotations

from typing import Final

ADDON_ID: Final[str] = "visual-sync"

# Host channel events
START_BUILD: Final[str] = f"{ADDON_ID}/startBuild"
BUILD_STARTED: Final[str] = f"{ADDON_ID}/buildStarted"
IS_OUTDATED: Final[str] = f"{ADDON_ID}/isOutdated"

# Shared session state keys
SELECTED_MODE_NAME: Final[str] = "selectedModeName"
SELECTED_BROWSER_ID: Final[str] = "selectedBrowserId"

POLL_INTERVAL_SECONDS: Final[float] = 5.0
STATE_WRITE_DELAY_SECONDS: Final[float] = 5.0

STATUS_TITLE: Final[str] = "Visual Tests"
