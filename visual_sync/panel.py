"""HTTP surface for the review panel."""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from visual_sync.config import SettingsError
from visual_sync.dependencies import PanelState, panel_state_dependency, session_dependency
from visual_sync.logger import get_logger, log_with_context
from visual_sync.services.review import (
    ReviewBatch,
    ReviewOutcome,
    ReviewPreconditionError,
    ReviewRequestError,
)
from visual_sync.services.status_sync import build_status_filter, count_statuses
from visual_sync.services.visual_tests import VisualTestsSession
from visual_sync.utils.invariants import InvariantViolation

router = APIRouter()

logger = get_logger()


class PanelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StoryRequest(PanelRequest):
    story_id: str


class ReviewRequest(PanelRequest):
    batch: ReviewBatch = ReviewBatch.SPEC


class ModeRequest(PanelRequest):
    name: str


class BrowserRequest(PanelRequest):
    browser_id: str


class BuildRequest(PanelRequest):
    build_id: str


def _view_payload(session: VisualTestsSession) -> Dict[str, Any]:
    view = session.view()
    payload = jsonable_encoder(view)
    payload["hasBuild"] = view.has_build
    return payload


def _review_payload(outcome: ReviewOutcome) -> Dict[str, Any]:
    if outcome.ok:
        return {
            "ok": True,
            "testId": outcome.test_id,
            "updatedTests": {test_id: value.value for test_id, value in outcome.updated_tests.items()},
        }

    error = outcome.error
    if isinstance(error, ReviewPreconditionError):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(error, ReviewRequestError):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    raise HTTPException(
        status_code=status_code,
        detail={"error": type(error).__name__, "message": error.message if error else "Review failed"},
    )


@router.get("/view")
async def get_view(session: VisualTestsSession = Depends(session_dependency)) -> Dict[str, Any]:
    return _view_payload(session)


@router.post("/story")
async def open_story(
    request: StoryRequest, state: PanelState = Depends(panel_state_dependency)
) -> Dict[str, Any]:
    log_with_context(logger, story_id=request.story_id).info("Opening story in panel")
    try:
        session = await state.open_session(request.story_id)
    except SettingsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    await session.refresh()
    return _view_payload(session)


@router.post("/refresh")
async def refresh(session: VisualTestsSession = Depends(session_dependency)) -> Dict[str, Any]:
    await session.refresh()
    return _view_payload(session)


@router.post("/tests/{test_id}/accept")
async def accept_test(
    test_id: str,
    request: ReviewRequest | None = None,
    session: VisualTestsSession = Depends(session_dependency),
) -> Dict[str, Any]:
    batch = request.batch if request else ReviewBatch.SPEC
    return _review_payload(await session.accept(test_id, batch))


@router.post("/tests/{test_id}/unaccept")
async def unaccept_test(
    test_id: str,
    request: ReviewRequest | None = None,
    session: VisualTestsSession = Depends(session_dependency),
) -> Dict[str, Any]:
    batch = request.batch if request else ReviewBatch.SPEC
    return _review_payload(await session.unaccept(test_id, batch))


@router.post("/switch-build")
async def switch_build(session: VisualTestsSession = Depends(session_dependency)) -> Dict[str, Any]:
    if not session.switch_to_last_build_on_branch():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="The latest build on this branch cannot be selected for the local revision.",
        )
    await session.refresh()
    return _view_payload(session)


@router.post("/select-build")
async def select_build(
    request: BuildRequest, session: VisualTestsSession = Depends(session_dependency)
) -> Dict[str, Any]:
    await session.select_build(request.build_id)
    return _view_payload(session)


@router.post("/start-build")
async def start_build(state: PanelState = Depends(panel_state_dependency)) -> Dict[str, Any]:
    if state.build_trigger is None:
        raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail="No local build runner is configured.")
    try:
        build_id = await state.build_trigger.start_build()
    except Exception as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Local build failed: {exc}") from exc
    return {"buildId": build_id}


@router.post("/select-mode")
async def select_mode(
    request: ModeRequest, session: VisualTestsSession = Depends(session_dependency)
) -> Dict[str, Any]:
    session.select_mode(request.name)
    return _view_payload(session)


@router.post("/select-browser")
async def select_browser(
    request: BrowserRequest, session: VisualTestsSession = Depends(session_dependency)
) -> Dict[str, Any]:
    session.select_browser(request.browser_id)
    return _view_payload(session)


@router.post("/onboarding/{action}")
async def onboarding_action(
    action: str, session: VisualTestsSession = Depends(session_dependency)
) -> Dict[str, str]:
    machine = session.onboarding
    try:
        if action == "walkthrough":
            state = machine.start_walkthrough()
        elif action == "complete":
            state = await machine.complete()
        elif action == "skip":
            state = await machine.skip()
        elif action == "dismiss":
            state = await machine.dismiss()
        else:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown onboarding action {action!r}")
    except InvariantViolation as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return {"onboarding": state.value}


@router.get("/statuses")
async def get_statuses(
    warnings: bool = False,
    errors: bool = False,
    state: PanelState = Depends(panel_state_dependency),
) -> Dict[str, Any]:
    matches = build_status_filter(state.statuses, show_warnings=warnings, show_errors=errors)
    return {
        "counts": count_statuses(state.statuses),
        "statuses": {
            story_id: entry.as_dict() for story_id, entry in state.statuses.items() if matches(entry)
        },
    }


@router.get("/notifications")
async def get_notifications(state: PanelState = Depends(panel_state_dependency)) -> List[Dict[str, str]]:
    return [jsonable_encoder(notification) for notification in state.notifications]
