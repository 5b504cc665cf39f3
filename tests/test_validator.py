"""
Tests for syncbridge/services/validator.py - Webflow field-type coercion and validation.
"""
import pytest

from syncbridge.services.validator import (
    coerce_field_data,
    compatible_types,
    is_compatible,
    recommended_type,
    sanitize_html,
    validate_email,
    validate_field_data,
    validate_field_type,
    validate_field_types,
    validate_phone,
    validate_required_fields,
    validate_slug,
    validate_url,
)
from syncbridge.utils.errors import ValidationError


class TestValidateFieldType:
    def test_plain_text_stringifies(self):
        assert validate_field_type(42, "PlainText") == "42"

    def test_text_rejects_null(self):
        with pytest.raises(ValueError, match="cannot be null"):
            validate_field_type(None, "PlainText")

    def test_rich_text_sanitized(self):
        html = '<p onclick="steal()">Hi</p><script>alert(1)</script>'
        assert validate_field_type(html, "RichText") == "<p >Hi</p>"

    def test_email(self):
        assert validate_field_type("ada@example.com", "Email") == "ada@example.com"
        with pytest.raises(ValueError, match="Invalid email"):
            validate_field_type("not-an-email", "Email")

    def test_link_requires_http(self):
        assert validate_field_type("https://example.com/x", "Link") == "https://example.com/x"
        with pytest.raises(ValueError, match="Invalid URL"):
            validate_field_type("ftp://example.com", "Link")

    def test_number_from_string(self):
        assert validate_field_type("19.99", "Number") == 19.99
        assert validate_field_type("7", "Number") == 7

    def test_number_rejects_bad_values(self):
        for bad in ("", None, "abc", "nan", "inf"):
            with pytest.raises(ValueError):
                validate_field_type(bad, "Number")
        with pytest.raises(ValueError):
            validate_field_type(True, "Number")

    def test_switch(self):
        assert validate_field_type("true", "Switch") is True
        assert validate_field_type(0, "Switch") is False
        assert validate_field_type(None, "Switch") is None
        with pytest.raises(ValueError, match="Expected boolean"):
            validate_field_type("yes", "Switch")

    def test_datetime(self):
        assert validate_field_type("2024-03-05T10:00:00Z", "DateTime") == "2024-03-05T10:00:00Z"
        with pytest.raises(ValueError, match="valid date"):
            validate_field_type("someday", "DateTime")

    def test_option_requires_string(self):
        assert validate_field_type("opt_1", "Option") == "opt_1"
        with pytest.raises(ValueError):
            validate_field_type(5, "Option")

    def test_multi_types_flatten(self):
        assert validate_field_type("a", "MultiReference") == ["a"]
        assert validate_field_type(["a", ["b", "c"]], "MultiOption") == ["a", "b", "c"]

    def test_file_object_url(self):
        assert validate_field_type({"url": "https://cdn/x.png"}, "Image") == "https://cdn/x.png"
        with pytest.raises(ValueError):
            validate_field_type({"name": "x"}, "Image")

    def test_unknown_type_passes_through(self):
        assert validate_field_type({"x": 1}, "Color") == {"x": 1}


class TestRequiredFields:
    def test_all_present(self):
        validate_required_fields({"name": "A", "tags": []}, ["name", "tags"])

    def test_missing_fields_listed(self):
        with pytest.raises(ValidationError, match="Missing required fields: name, slug"):
            validate_required_fields({"name": None}, ["name", "slug"])

    def test_no_requirements(self):
        validate_required_fields({}, None)


class TestCoerceFieldData:
    def test_coerces_typed_fields(self):
        result = coerce_field_data(
            {"price": "10", "featured": "true", "name": "A"},
            {"price": "Number", "featured": "Switch", "missing": "PlainText"},
        )
        assert result == {"price": 10, "featured": True, "name": "A"}

    def test_collects_all_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            coerce_field_data(
                {"price": "abc", "email": "nope"},
                {"price": "Number", "email": "Email"},
            )
        message = str(exc_info.value)
        assert "Field 'price'" in message
        assert "Field 'email'" in message

    def test_no_types_is_copy(self):
        data = {"a": 1}
        result = coerce_field_data(data, None)
        assert result == data
        assert result is not data


class TestHelpers:
    def test_slug(self):
        assert validate_slug("hello-world-2") is True
        assert validate_slug("Hello") is False
        assert validate_slug("a--b") is False
        assert validate_slug("a" * 101) is False

    def test_url(self):
        assert validate_url("mailto:ada@example.com") is True
        assert validate_url("example.com") is False

    def test_email_and_phone(self):
        assert validate_email("a@b.co") is True
        assert validate_email("a b@c.d") is False
        assert validate_phone("+1 (512) 555-0100") is True
        assert validate_phone("call me") is False

    def test_phone_uses_number_plan(self):
        assert validate_phone("5125550100") is True
        assert validate_phone("+44 20 7946 0958") is True
        assert validate_phone("512.555.0100") is True
        assert validate_phone("()") is False
        assert validate_phone("---") is False
        assert validate_phone("12") is False
        assert validate_phone("+1 555") is False
        assert validate_phone("") is False

    def test_sanitize_html_javascript_urls(self):
        assert sanitize_html('<a href="javascript:alert(1)">x</a>') == '<a href="alert(1)">x</a>'


def test_validate_field_data_reports_without_raising():
    valid, errors = validate_field_data(
        {"email": "bad", "phone": "+15125550100"},
        {
            "name": {"type": "PlainText", "required": True},
            "email": {"type": "Email"},
            "phone": {"type": "Phone"},
        },
    )
    assert valid is False
    assert "Field 'name' is required" in errors
    assert any(e.startswith("Field 'email'") for e in errors)
    assert not any(e.startswith("Field 'phone'") for e in errors)


def test_validate_field_data_rejects_implausible_phone():
    valid, errors = validate_field_data({"phone": "(  ) -"}, {"phone": {"type": "Phone"}})
    assert valid is False
    assert "Field 'phone': Invalid phone format" in errors


class TestFieldTypeCompatibility:
    def test_text_sources(self):
        assert is_compatible("textfield", "Email") is True
        assert is_compatible("textfield", "Number") is False
        assert is_compatible("TEXTFIELD", "PlainText") is True

    def test_unknown_source_has_no_compatible_types(self):
        assert is_compatible("unknown", "PlainText") is False
        assert compatible_types("unknown") == ()
        assert recommended_type("unknown") is None

    def test_recommended_is_first_compatible(self):
        assert compatible_types("singleselectfield") == ("Option", "PlainText")
        assert recommended_type("singleselectfield") == "Option"
        assert recommended_type("datefield") == "DateTime"

    def test_validate_field_types_collects_all_problems(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_field_types(
                {"price": "PlainText", "name": "Textish", "done": "Switch"},
                {"price": "numberfield", "done": "singlecheckbox"},
            )
        message = str(exc_info.value)
        assert "Field 'price'" in message
        assert "Field 'name'" in message
        assert "Field 'done'" not in message

    def test_validate_field_types_without_sources_checks_names_only(self):
        validate_field_types({"name": "PlainText", "tags": "MultiOption"})
        validate_field_types(None)
