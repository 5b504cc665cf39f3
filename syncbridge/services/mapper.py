"""
Mapping engine - turns a normalized SmartSuite record into Webflow fieldData.

Each target field has one rule (see syncbridge.schemas.mapping_rules). A rule
that fails is recorded as a warning and the field is skipped; whether that
matters is decided later by the required-field check.
"""
import logging
import re
import uuid
from functools import lru_cache
from typing import Any, Optional, Protocol

import jmespath
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.models.connection import Connection
from syncbridge.models.id_map import IdMap
from syncbridge.models.mapping import Mapping
from syncbridge.schemas.mapping_rules import (
    ConstantRule,
    DirectRule,
    ExpressionRule,
    MappingRule,
    ReferenceRule,
    TemplateRule,
    parse_rule,
)
from syncbridge.services.transforms import apply_transform, generate_slug, render_template

logger = logging.getLogger(__name__)

_PATH_SPLIT = re.compile(r"\.|\[|\]")


class ExpressionEvaluator(Protocol):
    """Anything that can evaluate a query expression against a record."""

    def evaluate(self, expression: str, data: Any) -> Any:
        ...


@lru_cache(maxsize=256)
def _compile_jmespath(expression: str):
    return jmespath.compile(expression)


class JMESPathEvaluator:
    """Default expression evaluator backed by JMESPath."""

    def evaluate(self, expression: str, data: Any) -> Any:
        return _compile_jmespath(expression).search(data)


def normalize_payload(payload: Any) -> Any:
    """Unwrap the webhook envelope: payload.data, then .record if present."""
    data = payload
    if isinstance(payload, dict) and payload.get("data"):
        data = payload["data"]
    if isinstance(data, dict) and data.get("record"):
        return data["record"]
    return data


def get_nested_value(obj: Any, path: str) -> Any:
    """
    Read a dotted/indexed path: "title", "$.owner.name", "tags[0]".
    Returns None for any missing segment.
    """
    clean = path[2:] if path.startswith("$.") else path
    current = obj
    for key in (k for k in _PATH_SPLIT.split(clean) if k):
        if current is None:
            return None
        if key.isdigit():
            index = int(key)
            if isinstance(current, list) and index < len(current):
                current = current[index]
            else:
                return None
        elif isinstance(current, dict):
            current = current.get(key)
        else:
            return None
    return current


class MappingEngine:
    """Evaluates a Mapping's rules against one record."""

    def __init__(self, db: AsyncSession, evaluator: Optional[ExpressionEvaluator] = None):
        self.db = db
        self.evaluator = evaluator or JMESPathEvaluator()

    async def apply_rule(self, rule: MappingRule, data: Any, connection: Connection) -> Any:
        """
        Resolve one rule, apply its transform, fall back to its default.
        Errors propagate unless the rule has a default.
        """
        try:
            if isinstance(rule, DirectRule):
                value = get_nested_value(data, rule.source)
            elif isinstance(rule, ExpressionRule):
                value = self.evaluator.evaluate(rule.expression, data)
            elif isinstance(rule, TemplateRule):
                value = render_template(rule.template, data)
            elif isinstance(rule, ConstantRule):
                value = rule.value
            elif isinstance(rule, ReferenceRule):
                value = await self.resolve_reference(rule, data, connection)
            else:
                raise ValueError(f"Unknown mapping type: {type(rule).__name__}")

            if rule.transform and value is not None:
                value = apply_transform(rule.transform, value, *rule.transform_args)

            if value is None and rule.has_default:
                value = rule.default

            return value
        except Exception as e:
            logger.warning("Field mapping failed: %s", str(e))
            if rule.has_default:
                return rule.default
            raise

    async def resolve_reference(
        self, rule: ReferenceRule, data: Any, connection: Connection
    ) -> Any:
        """
        Map SmartSuite record id(s) to Webflow item id(s) through IdMap.
        A single id yields one item id (or None); a list yields a list with
        unresolved ids dropped, in source order.
        """
        raw = get_nested_value(data, rule.source)
        if not raw:
            return None

        many = isinstance(raw, list)
        external_ids = [
            str(item.get("id")) if isinstance(item, dict) else str(item)
            for item in (raw if many else [raw])
        ]

        ref_connection_id = (
            uuid.UUID(rule.ref_connection_id) if rule.ref_connection_id else connection.id
        )
        result = await self.db.execute(
            select(IdMap.external_id, IdMap.target_item_id).where(
                IdMap.connection_id == ref_connection_id,
                IdMap.external_source == (connection.source_type or "smartsuite"),
                IdMap.external_id.in_(external_ids),
            )
        )
        resolved = {row.external_id: row.target_item_id for row in result.all()}

        if many:
            return [resolved[eid] for eid in external_ids if eid in resolved]
        return resolved.get(external_ids[0])

    async def build_field_data(
        self, mapping: Mapping, data: Any, connection: Connection
    ) -> tuple[dict, list[str]]:
        """
        Build Webflow fieldData for every rule in the mapping.
        Returns (field_data, warnings).
        """
        field_data: dict = {}
        warnings: list[str] = []

        for field_name, config in (mapping.field_map or {}).items():
            try:
                rule = parse_rule(config)
            except PydanticValidationError as e:
                warnings.append(f"Field '{field_name}': invalid rule ({e.error_count()} errors)")
                continue

            try:
                value = await self.apply_rule(rule, data, connection)
            except Exception as e:
                warnings.append(f"Field '{field_name}': {e}")
                continue

            if value is not None:
                field_data[field_name] = value

        if mapping.slug_template:
            try:
                field_data["slug"] = generate_slug(mapping.slug_template, data)
            except Exception as e:
                warnings.append(f"Slug generation failed: {e}")

        return field_data, warnings
