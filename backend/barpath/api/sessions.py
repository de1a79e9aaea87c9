"""Tracking session API endpoints."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from kombu.exceptions import OperationalError

from barpath.errors import SessionNotFoundError
from barpath.labels import ExerciseType, Tempo
from barpath.schemas.rep_record import RepRecordListResponse, RepRecordResponse
from barpath.schemas.session import (
    EvaluateRequest,
    FrameRequest,
    FrameResponse,
    PathResponse,
    ReportResponse,
    SessionCreate,
    SessionResponse,
    SessionStatsResponse,
)
from barpath.sessions import SessionHandle, SessionRegistry, get_session_registry

router = APIRouter()
logger = logging.getLogger(__name__)


def get_handle(session_id: str, registry: SessionRegistry) -> SessionHandle:
    try:
        return registry.get(session_id)
    except SessionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} not found"
        )


def session_response(handle: SessionHandle) -> SessionResponse:
    controller = handle.controller
    return SessionResponse(
        id=handle.session_id,
        exercise=handle.exercise.value,
        tempo=handle.tempo.key,
        active_paths=len(controller.active_paths()),
        completed_reps=len(controller.completed_reps()),
        next_rep_number=controller.next_rep_number,
        dropped_frames=controller.dropped_frames,
        stats=SessionStatsResponse.from_stats(controller.stats()),
    )


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def create_session(
    body: SessionCreate,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Start a new tracking session."""
    handle = registry.create(ExerciseType(body.exercise), Tempo.from_key(body.tempo))
    return session_response(handle)


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Get session labels, counters and statistics."""
    return session_response(get_handle(session_id, registry))


@router.post("/{session_id}/frames", response_model=FrameResponse)
def submit_frame(
    session_id: str,
    body: FrameRequest,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """
    Process one frame of detector output.

    If the session is still busy with a previous frame, this frame is
    dropped and the response has `dropped: true`.
    """
    handle = get_handle(session_id, registry)
    result = handle.controller.process_frame(body.anchors, body.timestamp_ms)

    if result is None:
        return FrameResponse(dropped=True, timestamp_ms=body.timestamp_ms)
    return FrameResponse.from_result(result)


@router.post("/{session_id}/evaluate", response_model=FrameResponse)
def evaluate_session(
    session_id: str,
    body: EvaluateRequest,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Run rep completion and cleanup at the given time without a new frame."""
    handle = get_handle(session_id, registry)
    return FrameResponse.from_result(handle.controller.evaluate(body.timestamp_ms))


@router.get("/{session_id}/paths", response_model=List[PathResponse])
def get_active_paths(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Snapshot of the active paths for overlay drawing."""
    handle = get_handle(session_id, registry)
    return [PathResponse.from_snapshot(p) for p in handle.controller.active_paths()]


@router.get("/{session_id}/reps", response_model=RepRecordListResponse)
def get_reps(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Analyzed completed reps."""
    controller = get_handle(session_id, registry).controller
    completed = controller.completed_reps()
    records = controller.analyzer.analyze_batch(completed, controller.exercise, controller.tempo)

    return RepRecordListResponse(
        items=[RepRecordResponse.model_validate(r) for r in records],
        total=len(records),
        rejected=len(completed) - len(records),
    )


@router.post("/{session_id}/reset", response_model=SessionResponse)
def reset_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Clear active paths, completed reps and counters."""
    handle = get_handle(session_id, registry)
    handle.controller.reset()
    return session_response(handle)


@router.post("/{session_id}/report", response_model=ReportResponse)
def request_report(
    session_id: str,
    response: Response,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """
    Queue CSV report generation for the session's completed reps.

    The report is built from a snapshot taken now; frames submitted
    afterwards are not included. Returns 202 with a task id, or 200 with
    status "empty" when there is nothing to report.
    """
    handle = get_handle(session_id, registry)
    report_request = handle.controller.build_report_request()

    if report_request.is_empty:
        return ReportResponse(status="empty")

    from barpath.worker import generate_report_task
    try:
        task = generate_report_task.delay(report_request.to_payload())
    except OperationalError as e:
        logger.error(f"Report queue unavailable for session {session_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Report queue unavailable, completed reps are kept; retry later"
        )
    handle.report_tasks.append(task.id)
    logger.info(f"Queued report {task.id} for session {session_id}")

    response.status_code = status.HTTP_202_ACCEPTED
    return ReportResponse(status="queued", task_id=task.id, rep_count=len(report_request.reps))


@router.get("/{session_id}/report/{task_id}", response_model=ReportResponse)
def get_report_status(
    session_id: str,
    task_id: str,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """
    Get the outcome of a queued report.

    Status is "queued" until the worker finishes, then "written" (with the
    report path), "empty", or "failed" with the error in `detail`. A failed
    report leaves the completed reps in the session, so it can be requested
    again.
    """
    handle = get_handle(session_id, registry)
    if task_id not in handle.report_tasks:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Report {task_id} not found for session {session_id}"
        )

    from barpath.worker import celery_app
    try:
        result = celery_app.AsyncResult(task_id)
        state = result.state
    except OperationalError as e:
        logger.error(f"Report backend unavailable for task {task_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Report backend unavailable; retry later"
        )

    if state == "SUCCESS":
        outcome = result.result or {}
        return ReportResponse(
            status=outcome.get("status", "written"),
            task_id=task_id,
            rep_count=outcome.get("rep_count", 0),
            path=outcome.get("path"),
        )
    if state in ("FAILURE", "REVOKED"):
        return ReportResponse(status="failed", task_id=task_id, detail=str(result.result))
    return ReportResponse(status="queued", task_id=task_id)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """End a session and discard its state."""
    try:
        registry.remove(session_id)
    except SessionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} not found"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
