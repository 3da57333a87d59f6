"""Errors raised by the entity stores and propagated unchanged to the API boundary."""

from typing import Dict, List, Optional


class NotFound(Exception):
    """A referenced record does not exist."""

    def __init__(self, resource: str, record_id: Optional[int]):
        self.resource = resource
        self.record_id = record_id
        super().__init__(f"{resource} with id {record_id} not found")


class ValidationFailed(Exception):
    """A create/update payload is missing or has invalid required fields."""

    def __init__(self, errors: Dict[str, List[str]]):
        self.errors = errors
        fields = ", ".join(sorted(errors))
        super().__init__(f"Validation failed for: {fields}")
