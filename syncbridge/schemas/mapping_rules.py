"""
Field mapping rules - one rule per target field in a Mapping's field_map.

Rules are a closed tagged union on `type`. Stored JSON looks like:
    {"name": {"type": "direct", "source": "$.title", "transform": "trim"}}
"""
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _RuleBase(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    transform: Optional[str] = Field(default=None, description="Named transform applied to the value")
    transform_args: list[Any] = Field(default_factory=list, alias="transformArgs")
    default: Any = Field(default=None, description="Used when the resolved value is null")

    @property
    def has_default(self) -> bool:
        """True when a default was configured, even an explicit null."""
        return "default" in self.model_fields_set


class DirectRule(_RuleBase):
    type: Literal["direct"]
    source: str = Field(..., min_length=1, description="Dotted/indexed path, optional '$.' prefix")


class ExpressionRule(_RuleBase):
    type: Literal["expression"]
    expression: str = Field(..., min_length=1)


class TemplateRule(_RuleBase):
    type: Literal["template"]
    template: str = Field(..., min_length=1, description="String with {{dotted.path}} placeholders")


class ConstantRule(_RuleBase):
    type: Literal["constant"]
    value: Any = None


class ReferenceRule(_RuleBase):
    type: Literal["reference"]
    source: str = Field(..., min_length=1)
    ref_connection_id: Optional[str] = Field(default=None, alias="refConnectionId")
    ref_target_field: Optional[str] = Field(default=None, alias="refTargetField")


MappingRule = Annotated[
    Union[DirectRule, ExpressionRule, TemplateRule, ConstantRule, ReferenceRule],
    Field(discriminator="type"),
]

_rule_adapter = TypeAdapter(MappingRule)
_field_map_adapter = TypeAdapter(dict[str, MappingRule])


def parse_rule(config: dict) -> MappingRule:
    """Validate one rule config. Raises pydantic.ValidationError."""
    return _rule_adapter.validate_python(config)


def parse_field_map(field_map: dict) -> dict[str, MappingRule]:
    """Validate a whole field map, keeping target field order."""
    return _field_map_adapter.validate_python(field_map or {})


def dump_field_map(rules: dict[str, MappingRule]) -> dict:
    """Serialize rules back to the stored JSON shape (camelCase aliases)."""
    return {
        name: rule.model_dump(by_alias=True, exclude_unset=True)
        for name, rule in rules.items()
    }
