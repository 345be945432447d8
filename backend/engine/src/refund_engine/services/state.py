"""Helpers for optimistic, state-guarded transitions.

Every entity carries a ``status`` and a ``version``. A transition is written
only if the stored record is still in one of the allowed source states at the
version that was read; otherwise nothing is written.
"""

from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel

from refund_engine.models import (
    ConcurrencyConflictError,
    ErrorCode,
    InvalidStateTransitionError,
)


def guarded_update(
    updated: BaseModel,
    fields: Iterable[str],
    allowed_from: Iterable[Enum],
    expected_version: int,
    remove: Iterable[str] = (),
) -> tuple[str, dict[str, Any], dict[str, str], str]:
    """Build the expressions for a state-guarded update.

    Args:
        updated: The record as it should look after the transition
        fields: Attributes to write from ``updated`` (version is always written)
        allowed_from: Source states the stored record must be in
        expected_version: Version the caller read
        remove: Attributes to remove

    Returns:
        Tuple of (update_expression, values, names, condition_expression)
    """
    item = updated.model_dump(mode="json")
    names: dict[str, str] = {"#status": "status", "#version": "version"}
    values: dict[str, Any] = {
        ":expected_version": expected_version,
        ":next_version": expected_version + 1,
    }

    assignments = ["#version = :next_version"]
    for index, field in enumerate(fields):
        if field == "version":
            continue
        names[f"#f{index}"] = field
        values[f":f{index}"] = item[field]
        assignments.append(f"#f{index} = :f{index}")

    allowed_placeholders = []
    for index, state in enumerate(allowed_from):
        values[f":allowed{index}"] = state.value
        allowed_placeholders.append(f":allowed{index}")

    update_expression = "SET " + ", ".join(assignments)
    removals = list(remove)
    if removals:
        for index, field in enumerate(removals):
            names[f"#r{index}"] = field
        update_expression += " REMOVE " + ", ".join(
            f"#r{index}" for index in range(len(removals))
        )

    condition = (
        f"#status IN ({', '.join(allowed_placeholders)}) "
        "AND #version = :expected_version"
    )
    return update_expression, values, names, condition


def raise_transition_failure(
    entity: str,
    entity_id: str,
    action: str,
    current_status: Enum,
    allowed_from: Iterable[Enum],
) -> None:
    """Raise the error explaining why a guarded write did not apply.

    Raises:
        InvalidStateTransitionError: If the record left the allowed states
        ConcurrencyConflictError: If only its version moved on
    """
    allowed = list(allowed_from)
    if current_status not in allowed:
        raise InvalidStateTransitionError(
            ErrorCode.INVALID_STATE_TRANSITION,
            details={
                "entity": entity,
                "id": entity_id,
                "action": action,
                "current_status": current_status.value,
                "allowed_from": ", ".join(s.value for s in allowed),
            },
        )
    raise ConcurrencyConflictError(
        ErrorCode.VERSION_CONFLICT,
        details={"entity": entity, "id": entity_id, "action": action},
    )
