"""Recovery of almost-valid structured output.

`recover` is only called after direct validation failed. It works in phases:

1. parse: try the raw text as JSON.
2. sanitize: apply text repairs in order, re-parsing after each one that
   changed the text, until something parses.
3. validate: check the parsed tree against the schema.
4. transform: apply tree repairs in order.
5. revalidate: check the repaired tree.

A repair is recorded in `applied_repairs` only when it changed something.
"""

from __future__ import annotations

from collections.abc import Sequence
import json
import logging
from typing import Any

from llm_router.core.exceptions import RecoveryError
from llm_router.core.models import RecoveryErrorKind
from llm_router.core.types import (
    Failure,
    RecoveryOutcome,
    RecoverySuccess,
    SchemaLike,
)
from llm_router.recovery.sanitizers import DEFAULT_TEXT_REPAIRS, TextRepair
from llm_router.recovery.schema import SchemaMetadata
from llm_router.recovery.transforms import DEFAULT_TREE_REPAIRS, TreeRepair

logger = logging.getLogger(__name__)


def _try_parse(text: str) -> tuple[Any, ValueError | None]:
    try:
        return json.loads(text, strict=False), None
    except ValueError as e:
        return None, e


def _try_validate(
    value: Any, schema: SchemaLike | None
) -> tuple[bool, Any, Exception | None]:
    if schema is None:
        return True, value, None
    try:
        return True, schema.parse(value), None
    except Exception as e:
        return False, None, e


def recover(
    raw_text: str,
    schema: SchemaLike | None,
    *,
    resource_name: str = "response",
    text_repairs: Sequence[TextRepair] = DEFAULT_TEXT_REPAIRS,
    tree_repairs: Sequence[TreeRepair] = DEFAULT_TREE_REPAIRS,
) -> RecoveryOutcome[Any]:
    """Repair `raw_text` into a value accepted by `schema`.

    Args:
        raw_text: Model output that failed direct validation.
        schema: Parse-or-throw target. `None` accepts any JSON value.
        resource_name: Name used in error messages and logs.
        text_repairs: Ordered text passes.
        tree_repairs: Ordered tree passes.

    Returns:
        `RecoverySuccess` with the value and the repairs that fired, or
        `Failure(RecoveryError)` of kind PARSE or VALIDATION.
    """
    metadata = getattr(schema, "metadata", None) or SchemaMetadata()
    applied: list[str] = []
    phases: list[str] = ["parse"]

    text = raw_text
    parsed, parse_error = _try_parse(text)
    if parse_error is not None:
        phases.append("sanitize")
        for repair in text_repairs:
            updated = repair.apply(text)
            if updated == text:
                continue
            applied.append(repair.name)
            text = updated
            parsed, parse_error = _try_parse(text)
            if parse_error is None:
                break

    if parse_error is not None:
        return Failure(
            RecoveryError(
                RecoveryErrorKind.PARSE,
                f"Response for resource '{resource_name}' cannot be parsed to JSON "
                f"after all sanitization attempts: {parse_error}",
                applied_repairs=tuple(applied),
                pipeline_phases=tuple(phases),
                cause=parse_error,
            )
        )

    phases.append("validate")
    ok, value, validation_error = _try_validate(parsed, schema)
    if ok:
        return RecoverySuccess(value, tuple(applied), tuple(phases))

    phases.append("transform")
    tree = parsed
    for repair in tree_repairs:
        updated = repair.apply(tree, metadata)
        if updated is tree:
            continue
        logger.debug("Repair '%s' applied for resource '%s'", repair.name, resource_name)
        applied.append(repair.name)
        tree = updated

    if tree is not parsed:
        phases.append("revalidate")
        ok, value, validation_error = _try_validate(tree, schema)
        if ok:
            return RecoverySuccess(value, tuple(applied), tuple(phases))

    return Failure(
        RecoveryError(
            RecoveryErrorKind.VALIDATION,
            f"Response for resource '{resource_name}' does not match the expected "
            f"schema after repairs: {validation_error}",
            applied_repairs=tuple(applied),
            pipeline_phases=tuple(phases),
            cause=validation_error,
        )
    )
