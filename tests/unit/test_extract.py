"""Tests for attributedBody text extraction."""

from unittest.mock import patch

from txts.extract import (
    MAX_SEARCH_DEPTH,
    decode_typedstream,
    extract_longest_run,
    extract_text,
    extract_text_fallback,
    find_string,
)


class FakeNSString:
    def __init__(self, value):
        self.value = value


class FakeAttributedString:
    __slots__ = ("NSString", "attributes")

    def __init__(self, string, attributes=None):
        self.NSString = string
        self.attributes = attributes


class Wrapper:
    def __init__(self, contents):
        self._private = "ignored private field"
        self.contents = contents


def test_fallback_plus_pattern():
    """Test extracting text wrapped in the \\x01+ ... \\x86 markers."""
    assert extract_text_fallback(b"\x01+Hello this is a message\x86") == "Hello this is a message"


def test_fallback_plus_pattern_strips_control_characters():
    """Test that control bytes inside the span are removed."""
    assert extract_text_fallback(b"\x01+\x0fHi\x02 there\x86") == "Hi there"


def test_fallback_empty_blob():
    """Test that an empty blob yields nothing."""
    assert extract_text_fallback(b"") is None
    assert extract_text(b"") is None
    assert extract_text(None) is None


def test_fallback_longest_run():
    """Test falling back to the longest readable run."""
    blob = b"\x00\x00short\x00\x00this is the longer readable text\x00\x00"
    assert extract_text_fallback(blob) == "this is the longer readable text"


def test_fallback_ignores_class_names():
    """Test that archiver class names are never returned as text."""
    blob = b"\x04\x0bstreamtyped\x81\xe8\x03\x84\x01@\x84\x84\x84NSMutableAttributedString\x00"
    assert extract_text_fallback(blob) is None


def test_fallback_binary_only():
    """Test that a blob with no readable content yields nothing."""
    assert extract_text_fallback(b"\x00\x01\x02\x03\x04") is None


def test_longest_run_first_wins_on_ties():
    """Test that the first of equally long runs is chosen."""
    assert extract_longest_run("\x00alpha\x00bravo\x00") == "alpha"


def test_find_string_primitives():
    """Test searching plain values and sequences."""
    assert find_string("  hello  ") == "hello"
    assert find_string("   ") is None
    assert find_string(42) is None
    assert find_string([None, "", ["nested text"]]) == "nested text"


def test_find_string_prefers_string_fields():
    """Test that NSString fields win over earlier generic fields."""
    obj = FakeAttributedString("the message", attributes={"font": "Helvetica"})
    assert find_string(obj) == "the message"

    record = {"attributes": {"font": "Helvetica"}, "NS.string": "from a dict"}
    assert find_string(record) == "from a dict"


def test_find_string_recurses_into_objects():
    """Test that nested objects are searched and private fields skipped."""
    assert find_string(Wrapper([FakeNSString("deep text")])) == "deep text"


def test_find_string_depth_limit():
    """Test that very deep graphs stop the search instead of recursing forever."""
    obj = "buried"
    for _ in range(MAX_SEARCH_DEPTH + 5):
        obj = [obj]
    assert find_string(obj) is None


def test_decode_typedstream_failure_returns_none():
    """Test that decode errors are swallowed so the fallback can run."""
    with patch("txts.extract.typedstream.unarchive_from_data", side_effect=ValueError("bad")):
        assert decode_typedstream(b"\x01+Hi there\x86") is None


def test_extract_text_prefers_decoded_string():
    """Test that a successful decode is used before byte scanning."""
    decoded = [FakeAttributedString("Decoded text")]
    with patch("txts.extract.typedstream.unarchive_from_data", return_value=decoded):
        assert extract_text(b"\x01+Scanned text\x86") == "Decoded text"


def test_extract_text_falls_back_when_decode_finds_nothing():
    """Test that an empty decoded graph falls through to byte scanning."""
    with patch("txts.extract.typedstream.unarchive_from_data", return_value=[None, ""]):
        assert extract_text(b"\x01+Scanned text\x86") == "Scanned text"


def test_extract_text_falls_back_on_decode_error():
    """Test the full chain on a blob that isn't a valid typedstream."""
    with patch("txts.extract.typedstream.unarchive_from_data", side_effect=Exception("bad")):
        assert extract_text(b"\x00\x01+How are you\x86\x84") == "How are you"


def test_fallback_skips_class_names_next_to_message():
    """Test that a shorter genuine run wins over longer class-name runs."""
    blob = (
        b"\x04\x0bstreamtyped\x81\xe8\x03\x84\x01@\x84\x84\x84\x19NSMutableAttributedString\x00"
        b"\x84\x84\x12NSDictionary\x00\x94\x84\x01\x0bsee you soon\x86\x84"
    )
    assert extract_text_fallback(blob) == "see you soon"
