"""Identifier helpers for tenant documents.

Tenant data was written by more than one generation of tooling, so the same
reference may be stored as a BSON ObjectId in one document and as its hex
string in another. Queries match both forms; comparisons use string forms.
"""

from datetime import datetime
from typing import Any, Iterable, List, Optional

from bson import ObjectId
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Return ``value`` as an ObjectId, or None when it is not one."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str):
        cleaned = value.strip().strip('"\'')
        if ObjectId.is_valid(cleaned):
            return ObjectId(cleaned)
    return None


def id_candidates(value: Any) -> List[Any]:
    """All stored representations a reference to ``value`` may have."""
    if value is None:
        return []
    oid = to_object_id(value)
    if oid is None:
        return [value]
    return [oid, str(oid)]


def ids_candidates(values: Iterable[Any]) -> List[Any]:
    candidates: List[Any] = []
    for value in values:
        for candidate in id_candidates(value):
            if candidate not in candidates:
                candidates.append(candidate)
    return candidates


def id_str(value: Any) -> str:
    # populated references arrive as whole documents
    if isinstance(value, dict) and "_id" in value:
        value = value["_id"]
    return str(value)


def same_id(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    return id_str(left) == id_str(right)


def contains_id(values: Any, target: Any) -> bool:
    """True if ``target`` is referenced in the (possibly missing) list ``values``."""
    if not values:
        return False
    if not isinstance(values, (list, tuple, set)):
        values = [values]
    return any(same_id(value, target) for value in values)


def _unwrap_models(value: Any) -> Any:
    # pydantic's own JSON mode knows nothing about ObjectId
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True)
    if isinstance(value, (list, tuple)):
        return [_unwrap_models(item) for item in value]
    if isinstance(value, dict):
        return {key: _unwrap_models(item) for key, item in value.items()}
    return value


def jsonable_document(document: Any) -> Any:
    """Encode documents for JSON responses (ObjectId -> str, datetime -> ISO)."""
    return jsonable_encoder(
        _unwrap_models(document),
        custom_encoder={ObjectId: str, datetime: lambda dt: dt.isoformat()},
    )
