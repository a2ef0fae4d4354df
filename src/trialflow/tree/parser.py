"""Parsing of server-authored trial documents into TrialNode trees.

Documents arrive either as a bare JSON array of nodes or as an object
wrapping the array under ``trials`` or ``executionOrder``. Field names are
accepted in both the current form (``kind``, ``childNodes``,
``orderingPolicy``, ``attachedSurvey{id,name,position}``) and the server's
historical form (``type``, ``childTrials``, ``trialOrdering``,
``attachedSurvey{instanceId,surveyName,position}`` or the flat
``attachedSurveyId``/``attachedSurveyName``/``surveyPosition`` fields).

Invalid nodes are dropped one at a time; only a document that cannot be
read at all raises SpecificationError.
"""

import json
import logging
from typing import Any, Iterable

from pydantic import ValidationError

from ..exceptions import InvalidTrialNodeError, SpecificationError
from ..types import AttachedSurvey, TrialKind, TrialNode

logger = logging.getLogger(__name__)

_WRAPPER_KEYS = ("trials", "executionOrder")


def _first(record: dict[str, Any], *names: str) -> Any:
    """Return the first present, non-null field among ``names``."""
    for name in names:
        value = record.get(name)
        if value is not None:
            return value
    return None


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


def _parse_attached_survey(record: dict[str, Any], node_id: str | None) -> AttachedSurvey | None:
    nested = record.get("attachedSurvey")
    if isinstance(nested, dict):
        survey_id = _first(nested, "id", "instanceId", "surveyId")
        name = _first(nested, "name", "surveyName")
        position = nested.get("position")
    else:
        survey_id = record.get("attachedSurveyId")
        name = record.get("attachedSurveyName")
        position = record.get("surveyPosition")

    if not survey_id:
        return None

    try:
        return AttachedSurvey(id=str(survey_id), name=str(name or ""), position=position)
    except ValidationError:
        logger.warning(
            f"Ignoring attached survey '{survey_id}' on trial '{node_id}': "
            f"position {position!r} is not 'before' or 'after'"
        )
        return None


def parse_node(record: Any) -> TrialNode:
    """Parse and validate a single node record, children first.

    Invalid children are dropped with a diagnostic; the parent is then
    validated against the children that survived.

    Args:
        record: Decoded JSON object for one node.

    Returns:
        The validated node.

    Raises:
        InvalidTrialNodeError: If the node itself is invalid.
    """
    if not isinstance(record, dict):
        raise InvalidTrialNodeError(None, f"expected an object, got {type(record).__name__}")

    node_id = record.get("id")
    node_id = str(node_id) if node_id not in (None, "") else None
    if node_id is None:
        raise InvalidTrialNodeError(None, "id is missing")

    raw_kind = _first(record, "kind", "type")
    if not raw_kind:
        raise InvalidTrialNodeError(node_id, "kind is missing")
    try:
        kind = TrialKind(str(raw_kind).strip().lower())
    except ValueError:
        raise InvalidTrialNodeError(node_id, f"unknown kind '{raw_kind}'") from None

    raw_children = _first(record, "childNodes", "childTrials")
    children: list[TrialNode] = []
    if isinstance(raw_children, list) and raw_children:
        if kind in (TrialKind.WITHIN, TrialKind.BETWEEN):
            children = parse_nodes(raw_children, parent_id=node_id)
        else:
            logger.debug(f"Ignoring children of non-group trial '{node_id}' ({kind.value})")

    survey_id = _first(record, "surveyId", "instanceId") if kind == TrialKind.SURVEY else record.get("surveyId")

    fields = {
        "id": node_id,
        "kind": kind,
        "label": record.get("label") or "",
        "description": record.get("description") or "",
        "order": record.get("order") or 0,
        "repetition_count": record.get("repetitionCount"),
        "conditions": record.get("conditions"),
        "child_nodes": children,
        "within_subjects_ivs": _string_list(record.get("withinSubjectsIVs")),
        "between_subjects_ivs": _string_list(record.get("betweenSubjectsIVs")),
        "ordering_policy": _first(record, "orderingPolicy", "trialOrdering"),
        "randomization_type": record.get("randomizationType"),
        "attached_survey": _parse_attached_survey(record, node_id),
        "survey_id": str(survey_id) if survey_id is not None else None,
        "survey_name": record.get("surveyName"),
    }

    try:
        return TrialNode(**fields)
    except ValidationError as e:
        reasons = "; ".join(err["msg"] for err in e.errors())
        raise InvalidTrialNodeError(node_id, reasons) from e


def parse_nodes(records: Iterable[Any], parent_id: str | None = None) -> list[TrialNode]:
    """Parse a list of node records, skipping invalid ones.

    Args:
        records: Decoded JSON node objects.
        parent_id: Id of the enclosing group, for diagnostics.

    Returns:
        Valid nodes in document order.
    """
    nodes: list[TrialNode] = []
    for record in records:
        if record is None:
            logger.warning("Skipping null trial record")
            continue
        try:
            nodes.append(parse_node(record))
        except InvalidTrialNodeError as e:
            where = f" in group '{parent_id}'" if parent_id else ""
            logger.error(f"{e}{where}. Skipping trial.")
    return nodes


def extract_node_records(payload: Any) -> list[Any]:
    """Locate the array of node records inside a decoded document.

    Raises:
        SpecificationError: If no node array can be found.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in _WRAPPER_KEYS:
            if isinstance(payload.get(key), list):
                return payload[key]
    raise SpecificationError(
        "Trial document is neither an array nor an object with a trials array",
        payload_preview=repr(payload)[:200],
    )


def parse_trial_document(payload: str | bytes | list | dict) -> list[TrialNode]:
    """Parse a complete trial document.

    Args:
        payload: Raw JSON text/bytes or an already decoded document.

    Returns:
        Top-level nodes that passed validation.

    Raises:
        SpecificationError: If the document is unreadable or holds no valid nodes.
    """
    if isinstance(payload, (str, bytes, bytearray)):
        if isinstance(payload, (bytes, bytearray)):
            try:
                text = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise SpecificationError(f"Trial document is not valid UTF-8: {e}", repr(bytes(payload[:200]))) from e
        else:
            text = payload
        if not text.strip():
            raise SpecificationError("Trial document is empty")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise SpecificationError(f"Trial document is not valid JSON: {e}", text[:200]) from e

    records = extract_node_records(payload)
    if not records:
        raise SpecificationError("Trial document contains no trials")

    nodes = parse_nodes(records)
    if not nodes:
        raise SpecificationError(f"None of the {len(records)} trial records were valid")

    logger.debug(f"Parsed {len(nodes)} top-level trials")
    return nodes
