"""
Tests for intake answer sanitization.
"""
import html

from services.sanitizer import normalize_email, sanitize_responses, sanitize_text, sanitize_value


class TestSanitizeText:
    def test_escapes_script_tag(self):
        assert sanitize_text("<script>alert(1)</script>") == "&lt;script&gt;alert(1)&lt;&#x2F;script&gt;"

    def test_escapes_all_markup_characters(self):
        assert sanitize_text("a & b \"c\" 'd'") == "a &amp; b &quot;c&quot; &#x27;d&#x27;"

    def test_plain_text_unchanged(self):
        assert sanitize_text("Lose 10 lbs by summer") == "Lose 10 lbs by summer"

    def test_whitespace_is_preserved(self):
        assert sanitize_text("  padded  ") == "  padded  "

    def test_already_escaped_text_is_escaped_again(self):
        assert sanitize_text("&amp;") == "&amp;amp;"

    def test_output_decodes_to_original(self):
        raw = "Knees <hurt> after 5/10 runs & \"tempo\" isn't fun"
        assert html.unescape(sanitize_text(raw)) == raw


class TestSanitizeValue:
    def test_list_order_preserved(self):
        assert sanitize_value(["<b>", "strength", "a/b"]) == ["&lt;b&gt;", "strength", "a&#x2F;b"]

    def test_nested_mapping(self):
        value = {"meals": {"breakfast": "<eggs>", "count": 3}}
        assert sanitize_value(value) == {"meals": {"breakfast": "&lt;eggs&gt;", "count": 3}}

    def test_non_string_scalars_pass_through(self):
        assert sanitize_value(42) == 42
        assert sanitize_value(3.5) == 3.5
        assert sanitize_value(True) is True
        assert sanitize_value(None) is None

    def test_tuple_becomes_list(self):
        assert sanitize_value(("<a>",)) == ["&lt;a&gt;"]


class TestSanitizeResponses:
    def test_keys_and_values_escaped(self):
        result = sanitize_responses({"<k>": "<v>", "age": 34})
        assert result == {"&lt;k&gt;": "&lt;v&gt;", "age": 34}

    def test_empty_mapping(self):
        assert sanitize_responses({}) == {}

    def test_does_not_mutate_input(self):
        raw = {"goal": "<x>", "focus": ["<y>"]}
        sanitize_responses(raw)
        assert raw == {"goal": "<x>", "focus": ["<y>"]}


def test_normalize_email():
    assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"
    assert normalize_email(None) == ""
