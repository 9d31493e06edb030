import pytest

from medialib_backend.features.index.filename_validator import MAX_NAME_LENGTH, validate_filename


@pytest.mark.parametrize("name", ["photo.jpg", "Summer 2024", "a (1).png", "ünïcödé.webp"])
def test_valid_names(name):
    assert validate_filename(name) == (True, "")


@pytest.mark.parametrize(
    "name,fragment",
    [
        ("", "empty"),
        ("a/b", "separators"),
        ("a\\b", "separators"),
        ("bad\x00name", "null"),
        ("tab\tname", "control"),
        ("what?.jpg", "not allowed"),
        ("pipe|name", "not allowed"),
        (".", "relative"),
        ("..", "relative"),
        (".hidden", "dot"),
        (" lead", "space"),
        ("trail ", "space"),
        ("ends.", "dot"),
        ("CON", "reserved"),
        ("lpt1.txt", "reserved"),
    ],
)
def test_invalid_names(name, fragment):
    ok, reason = validate_filename(name)
    assert ok is False
    assert fragment in reason.lower()


def test_too_long_name():
    ok, reason = validate_filename("a" * (MAX_NAME_LENGTH + 1))
    assert ok is False
    assert str(MAX_NAME_LENGTH) in reason
