"""JSON:API-style document rendering with dasherized attribute keys."""

from typing import Any, Dict, Iterable

from pydantic import BaseModel


def _dasherize(key: str) -> str:
    return key.replace("_", "-")


def resource(record: BaseModel, resource_type: str) -> Dict[str, Any]:
    data = record.model_dump(mode="json")
    record_id = data.pop("id")
    return {
        "id": str(record_id),
        "type": resource_type,
        "attributes": {_dasherize(k): v for k, v in data.items()},
    }


def document(record: BaseModel, resource_type: str) -> Dict[str, Any]:
    return {"data": resource(record, resource_type)}


def collection(records: Iterable[BaseModel], resource_type: str) -> Dict[str, Any]:
    return {"data": [resource(r, resource_type) for r in records]}
