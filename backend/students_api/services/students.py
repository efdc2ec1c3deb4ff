"""
Student service - entity operations against the MongoDB ``students`` collection.

Rules enforced here:
1. Ids must be 24-character hexadecimal strings (MongoDB ObjectIds);
   malformed ids are rejected before storage is queried.
2. Creation requires all five business fields to be non-blank.
3. Updates only overwrite fields that are present and non-blank; every
   other field keeps its stored value. Applying the same update twice
   yields the same document.
4. A partial update must carry at least one non-blank field.

A value is blank when it is missing, None, a whitespace-only string or
otherwise falsy (so ``age: 0`` does not count as a value).
"""

import re
import time
from typing import Any, Dict, List

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from students_api.errors import (
    BadRequestError, InvalidInputError, NotFoundError, UnprocessableInputError
)
from students_api.logging_config import get_logger, log_with_context
from students_api.models.student import STUDENT_FIELDS, StudentCreate, StudentUpdate

logger = get_logger("students")

OBJECT_ID_PATTERN = re.compile(r"[0-9a-fA-F]{24}")


def _is_blank(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    return not value


def parse_student_id(raw_id: str) -> ObjectId:
    """Validate an id taken from the URL and convert it to an ObjectId."""
    if not raw_id or not OBJECT_ID_PATTERN.fullmatch(raw_id):
        raise InvalidInputError("Invalid or missing ID format", details={"id": raw_id})
    return ObjectId(raw_id)


def serialize_student(document: Dict[str, Any]) -> Dict[str, Any]:
    """Render a stored document for the API, with ``_id`` exposed as ``id``."""
    result = {"id": str(document["_id"])}
    for field in STUDENT_FIELDS:
        result[field] = document.get(field)
    return result


def changed_fields(payload: StudentUpdate) -> Dict[str, Any]:
    """The non-blank business fields of an update body."""
    data = payload.model_dump()
    return {field: data[field] for field in STUDENT_FIELDS if not _is_blank(data.get(field))}


def list_students(collection: Collection) -> List[Dict[str, Any]]:
    start_time = time.time()
    students = [serialize_student(doc) for doc in collection.find()]
    duration_ms = (time.time() - start_time) * 1000
    log_with_context(logger, "INFO",
        f"Listed {len(students)} students",
        extra_data={"duration_ms": round(duration_ms, 2)})
    return students


def find_student(collection: Collection, raw_id: str) -> Dict[str, Any]:
    """Load a stored document by its URL id, raising InvalidInput or NotFound."""
    student_id = parse_student_id(raw_id)
    document = collection.find_one({"_id": student_id})
    if document is None:
        raise NotFoundError("Student not found", details={"id": raw_id})
    return document


def create_student(collection: Collection, payload: StudentCreate) -> Dict[str, Any]:
    data = payload.model_dump()
    missing = [field for field in STUDENT_FIELDS if _is_blank(data.get(field))]
    if missing:
        raise UnprocessableInputError("Please fill all the fields",
                                      details={"missing_fields": missing})

    document = {field: data[field] for field in STUDENT_FIELDS}
    result = collection.insert_one(document)
    document["_id"] = result.inserted_id

    log_with_context(logger, "INFO",
        "Student created",
        context={"student_id": str(result.inserted_id)},
        extra_data={"collection": collection.name})
    return serialize_student(document)


def update_student(collection: Collection, document: Dict[str, Any],
                   payload: StudentUpdate, require_changes: bool = False) -> Dict[str, Any]:
    """
    Overwrite the non-blank fields of ``payload`` on a loaded document.

    ``require_changes`` rejects bodies without any non-blank field (PATCH).
    Storage failures on save surface as BadRequest with the driver's message.
    """
    changes = changed_fields(payload)
    if require_changes and not changes:
        raise BadRequestError("At least one field must be provided for update")

    student_id = document["_id"]
    if not changes:
        return serialize_student(document)

    try:
        updated = collection.find_one_and_update(
            {"_id": student_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as exc:
        log_with_context(logger, "WARNING",
            f"Update rejected by storage: {exc}",
            context={"student_id": str(student_id)})
        raise BadRequestError(str(exc))

    if updated is None:
        raise NotFoundError("Student not found", details={"id": str(student_id)})

    log_with_context(logger, "INFO",
        f"Student updated: {', '.join(sorted(changes))}",
        context={"student_id": str(student_id)})
    return serialize_student(updated)


def delete_student(collection: Collection, document: Dict[str, Any]) -> Dict[str, Any]:
    student_id = document["_id"]
    result = collection.delete_one({"_id": student_id})
    if result.deleted_count == 0:
        raise NotFoundError("Student not found", details={"id": str(student_id)})
    log_with_context(logger, "INFO", "Student deleted",
        context={"student_id": str(student_id)})
    return {"message": "Student deleted", "id": str(student_id)}
