"""
Leave applications.

At most one leave may exist per (salesmanId, fromDate). The unique index
created by :func:`database.ensure_indexes` is what enforces it; the lookup
before insert is only there to give a readable error.

Status lifecycle: pending -> approved, pending -> rejected. Applying the
current status again changes nothing.
"""

from datetime import date, datetime, timezone
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import LEAVES, create_document, get_documents, object_id, to_str_id
from errors import ConflictError, NotFoundError, ValidationError
from logs import log
from reports import month_filter
from schemas import Leave, LeaveDecision, LeaveRequest


def build_leave(request: LeaveRequest, *, default_status: str, allow_status: bool = False) -> Leave:
    """Turn a leave request into the record to store.

    The configured ``default_status`` applies unless ``allow_status`` is set
    (admin callers) and the request names a status.
    """
    status = request.status if allow_status and request.status else default_status
    try:
        leave = Leave(**request.model_dump(exclude={"status", "date"}), status=status)
    except PydanticValidationError as exc:
        raise ValidationError(str(exc.errors()[0]["msg"])) from exc
    return stamp_approval(leave)


def stamp_approval(leave: Leave) -> Leave:
    if leave.status == "approved" and leave.approved_at is None:
        leave.approved_at = datetime.now(timezone.utc)
    return leave


def insert_leave(db: Database, leave: Leave) -> dict:
    """Store ``leave`` unless the salesman already has one starting that day.

    Raises:
        ConflictError: if a leave with the same salesmanId and fromDate exists.
    """
    key = {"salesmanId": leave.salesman_id, "fromDate": leave.from_date}
    message = f"Leave already applied for {leave.salesman_id} on {leave.from_date}"
    if db[LEAVES].find_one(key):
        log.debug(message)
        raise ConflictError(message)
    try:
        return create_document(db, LEAVES, leave)
    except DuplicateKeyError as exc:
        raise ConflictError(message) from exc


def apply_for_leave(db: Database, request: LeaveRequest, *, default_status: str, allow_status: bool = False) -> dict:
    doc = insert_leave(db, build_leave(request, default_status=default_status, allow_status=allow_status))
    log.info("Leave %s for '%s' from %s (%s)", doc["_id"], doc["salesmanId"], doc["fromDate"], doc["status"])
    return doc


def decide_leave(db: Database, leave_id: str, decision: LeaveDecision, admin_username: str) -> dict:
    """Approve or reject a pending leave.

    Only pending leaves can be decided. Deployments that review leave requests
    should run with ``LEAVE_DEFAULT_STATUS=pending``; under the ``approved``
    default, leaves created by salesmen are already decided and cannot be
    rejected.

    Raises:
        NotFoundError: if the leave does not exist.
        ConflictError: if the leave was already decided the other way.
    """
    oid = object_id(leave_id, "Leave")
    doc = db[LEAVES].find_one({"_id": oid})
    if not doc:
        raise NotFoundError("Leave not found")

    current = doc.get("status", "pending")
    if current == decision.status:
        return to_str_id(doc)
    if current != "pending":
        raise ConflictError(f"Leave is already {current}")

    now = datetime.now(timezone.utc)
    update = {"$set": {"status": decision.status, "approvedBy": admin_username, "approvedAt": now, "updatedAt": now}}
    if decision.status == "approved":
        update["$unset"] = {"rejectionReason": ""}
    elif decision.rejection_reason:
        update["$set"]["rejectionReason"] = decision.rejection_reason

    res = db[LEAVES].update_one({"_id": oid, "status": current}, update)
    if res.matched_count == 0:
        raise ConflictError("Leave was updated by another request")
    log.info("Leave %s %s by '%s'", leave_id, decision.status, admin_username)
    return to_str_id(db[LEAVES].find_one({"_id": oid}))


def delete_leave(db: Database, leave_id: str) -> None:
    res = db[LEAVES].delete_one({"_id": object_id(leave_id, "Leave")})
    if res.deleted_count == 0:
        raise NotFoundError("Leave not found")


def list_leaves(
    db: Database,
    salesman_id: Optional[str] = None,
    day: Optional[str] = None,
    month: Optional[str] = None,
) -> List[dict]:
    query: dict = {}
    if salesman_id:
        query["salesmanId"] = salesman_id
    if day:
        query["date"] = day
    if month:
        query.update(month_filter(month))
    return get_documents(db, LEAVES, query, sort=[("date", -1)])


def leaves_on_date(db: Database, day: str) -> List[dict]:
    """Approved leaves whose span covers ``day``."""
    query = {"fromDate": {"$lte": day}, "toDate": {"$gte": day}, "status": "approved"}
    return get_documents(db, LEAVES, query, sort=[("salesmanName", 1)])


def leaves_in_range(db: Database, start: str, end: str) -> List[dict]:
    """Leaves of any status that overlap ``start``..``end``."""
    query = {
        "$or": [
            {"fromDate": {"$gte": start, "$lte": end}},
            {"toDate": {"$gte": start, "$lte": end}},
            {"fromDate": {"$lte": start}, "toDate": {"$gte": end}},
        ]
    }
    return get_documents(db, LEAVES, query, sort=[("fromDate", -1)])


def salesmen_on_leave_today(db: Database, today: Optional[date] = None) -> List[dict]:
    day = (today or datetime.now(timezone.utc).date()).isoformat()
    return leaves_on_date(db, day)
