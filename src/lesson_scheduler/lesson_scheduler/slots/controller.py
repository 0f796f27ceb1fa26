from __future__ import annotations

import logging
from typing import Any, Dict

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from ..core.exceptions import (
    ConflictError,
    DomainError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from ..container import Container

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (ConflictError, 409),
    (PersistenceError, 503),
)


def _http_status(error: DomainError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 400


def _ok(data: Any, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def _fail(error: DomainError):
    body: Dict[str, Any] = {"success": False, "error": str(error), "kind": error.kind}
    if isinstance(error, ConflictError) and error.conflicting_slot is not None:
        body["conflicting_slot"] = error.conflicting_slot.to_dict()
    return jsonify(body), _http_status(error)


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def register(app: Flask, container: Container) -> None:
    enforce_default = bool(app.config.get("ENFORCE_NO_CONFLICT", False))

    def _payload() -> Dict[str, Any]:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data

    @app.errorhandler(DomainError)
    def handle_domain_error(error: DomainError):
        return _fail(error)

    @app.errorhandler(Exception)
    def handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"success": False, "error": error.description, "kind": "http_error"}), error.code
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"success": False, "error": "Unexpected server error", "kind": "internal_error"}), 500

    @app.route("/api/schedule/lesson-slots", methods=["GET"], endpoint="api_lesson_slots")
    def list_lesson_slots():
        rows = container.schedule_queries.get_slots_for_student_range(
            student_id=request.args.get("studentId", ""),
            start_date=request.args.get("startDate", ""),
            end_date=request.args.get("endDate", ""),
        )
        return _ok([r.to_dict() for r in rows])

    @app.route("/api/schedule/lesson-slots", methods=["POST"], endpoint="api_lesson_slots_create")
    def create_lesson_slot():
        data = _payload()
        slot = container.slot_lifecycle.create(
            student_id=data.get("student_id", ""),
            teacher_id=data.get("teacher_id"),
            slot_type=data.get("slot_type", ""),
            slot_date=data.get("slot_date", ""),
            start_time=data.get("start_time", ""),
            end_time=data.get("end_time", ""),
            meeting_link=data.get("meeting_link"),
            notes=data.get("notes"),
            enforce_no_conflict=_as_bool(data.get("enforce_no_conflict"), enforce_default),
        )
        return _ok(slot.to_dict(), 201)

    @app.route("/api/schedule/lesson-slots/<slot_id>", methods=["PATCH"], endpoint="api_lesson_slots_update")
    def update_lesson_slot(slot_id: str):
        data = dict(_payload())
        data.pop("slot_id", None)
        enforce = _as_bool(data.pop("enforce_no_conflict", None), enforce_default)
        slot = container.slot_lifecycle.update(slot_id=slot_id, enforce_no_conflict=enforce, **data)
        return _ok(slot.to_dict())

    @app.route("/api/schedule/lesson-slots/<slot_id>", methods=["DELETE"], endpoint="api_lesson_slots_delete")
    def delete_lesson_slot(slot_id: str):
        outcome = container.slot_lifecycle.delete(slot_id=slot_id)
        return _ok(
            {
                "id": outcome.slot_id,
                "deleted_absence_requests": list(outcome.absence_request_ids),
                "deleted_additional_requests": list(outcome.additional_request_ids),
            }
        )

    @app.route("/api/schedule/lesson-slots/<slot_id>/absence", methods=["POST"], endpoint="api_lesson_slots_absence")
    def mark_absent(slot_id: str):
        data = _payload()
        absence = container.slot_lifecycle.mark_absent(slot_id=slot_id, reason=data.get("reason", ""))
        return _ok(absence.to_dict(), 201)

    @app.route(
        "/api/schedule/lesson-slots/<slot_id>/reschedule",
        methods=["POST"],
        endpoint="api_lesson_slots_reschedule",
    )
    def reschedule(slot_id: str):
        data = _payload()
        makeup = container.slot_lifecycle.reschedule(
            original_slot_id=slot_id,
            new_date=data.get("new_date", ""),
            new_start_time=data.get("new_start_time", ""),
            new_end_time=data.get("new_end_time", ""),
            teacher_id=data.get("teacher_id"),
            meeting_link=data.get("meeting_link"),
            notes=data.get("notes"),
            enforce_no_conflict=_as_bool(data.get("enforce_no_conflict"), enforce_default),
        )
        return _ok(makeup.to_dict(), 201)

    @app.route("/api/schedule/lesson-slots/<slot_id>/complete", methods=["POST"], endpoint="api_lesson_slots_complete")
    def mark_completed(slot_id: str):
        slot = container.slot_lifecycle.mark_completed(slot_id=slot_id)
        return _ok(slot.to_dict())

    @app.route("/api/schedule/conflicts/check", methods=["POST"], endpoint="api_conflicts_check")
    def check_conflict():
        data = _payload()
        hit = container.conflict_checker.check_conflict(
            teacher_id=data.get("teacher_id"),
            slot_date=data.get("slot_date", ""),
            start_time=data.get("start_time", ""),
            end_time=data.get("end_time", ""),
            exclude_slot_id=data.get("exclude_slot_id"),
        )
        return _ok({"has_conflict": hit is not None, "conflict_slot": hit.to_dict() if hit else None})

    @app.route(
        "/api/schedule/additional-requests/<request_id>/approve",
        methods=["POST"],
        endpoint="api_additional_requests_approve",
    )
    def approve_additional_request(request_id: str):
        data = request.get_json(silent=True) or {}
        slot = container.slot_lifecycle.approve_additional_request(
            request_id=request_id,
            teacher_id=data.get("teacher_id"),
            admin_notes=data.get("admin_notes"),
            enforce_no_conflict=_as_bool(data.get("enforce_no_conflict"), enforce_default),
        )
        return _ok(slot.to_dict(), 201)
