"""
Tests for syncbridge/services/mappings.py - one active mapping per connection.
"""
import pytest
from pydantic import ValidationError
from sqlalchemy import select

from syncbridge.models.audit_log import AuditLog
from syncbridge.models.mapping import Mapping
from syncbridge.services.mappings import activate_mapping, get_active_mapping
from syncbridge.utils.errors import ValidationError as SyncValidationError


class TestActivateMapping:
    async def test_first_mapping_becomes_active(self, db, connection):
        mapping = await activate_mapping(
            db, connection.id,
            {"name": {"type": "direct", "source": "title", "transformArgs": []}},
            slug_template="{{title}}",
            required_fields=["name"],
        )
        await db.commit()

        active = await get_active_mapping(db, connection.id)
        assert active.id == mapping.id
        assert active.field_map == {"name": {"type": "direct", "source": "title", "transformArgs": []}}
        assert active.required_fields == ["name"]

    async def test_replaces_previous_active(self, db, connection):
        first = await activate_mapping(db, connection.id, {"name": {"type": "direct", "source": "title"}})
        await db.commit()
        second = await activate_mapping(db, connection.id, {"name": {"type": "constant", "value": "x"}})
        await db.commit()

        rows = (await db.execute(
            select(Mapping.id, Mapping.is_active).where(Mapping.connection_id == connection.id)
        )).all()
        assert dict(rows) == {first.id: False, second.id: True}
        assert (await get_active_mapping(db, connection.id)).id == second.id

    async def test_activation_is_audited(self, db, connection):
        await activate_mapping(
            db, connection.id, {"name": {"type": "direct", "source": "title"}}, actor="ops",
        )
        await db.commit()

        audit = (await db.execute(select(AuditLog))).scalar_one()
        assert audit.action == "mapping.activated"
        assert audit.actor == "ops"
        assert audit.data["fields"] == ["name"]

    @pytest.mark.parametrize("field_map", [
        {"name": {"type": "lookup", "source": "title"}},
        {"name": {"type": "direct"}},
        {"name": {"type": "direct", "source": "title", "unknown": 1}},
    ])
    async def test_invalid_rules_rejected(self, db, connection, field_map):
        with pytest.raises(ValidationError):
            await activate_mapping(db, connection.id, field_map)
        assert await get_active_mapping(db, connection.id) is None


class TestGetActiveMapping:
    async def test_none_configured(self, db, connection):
        assert await get_active_mapping(db, connection.id) is None

    async def test_inactive_ignored(self, db, connection, make_mapping):
        await make_mapping(connection.id, is_active=False)
        assert await get_active_mapping(db, connection.id) is None


class TestFieldTypeChecks:
    async def test_compatible_types_accepted(self, db, connection):
        mapping = await activate_mapping(
            db, connection.id,
            {"price": {"type": "direct", "source": "amount"}},
            field_types={"price": "Number"},
            source_types={"price": "currencyfield"},
        )
        await db.commit()
        assert mapping.field_types == {"price": "Number"}

    async def test_incompatible_source_rejected(self, db, connection):
        with pytest.raises(SyncValidationError) as exc_info:
            await activate_mapping(
                db, connection.id,
                {"price": {"type": "direct", "source": "amount"}},
                field_types={"price": "PlainText"},
                source_types={"price": "numberfield"},
            )
        assert "cannot feed PlainText" in str(exc_info.value)
        assert await get_active_mapping(db, connection.id) is None

    async def test_unknown_target_type_rejected(self, db, connection):
        with pytest.raises(SyncValidationError):
            await activate_mapping(
                db, connection.id,
                {"name": {"type": "direct", "source": "title"}},
                field_types={"name": "Textish"},
            )
        assert await get_active_mapping(db, connection.id) is None

    async def test_rejection_keeps_previous_mapping_active(self, db, connection):
        first = await activate_mapping(db, connection.id, {"name": {"type": "direct", "source": "title"}})
        await db.commit()
        with pytest.raises(SyncValidationError):
            await activate_mapping(
                db, connection.id,
                {"done": {"type": "direct", "source": "done"}},
                field_types={"done": "PlainText"},
                source_types={"done": "singlecheckbox"},
            )
        assert (await get_active_mapping(db, connection.id)).id == first.id
