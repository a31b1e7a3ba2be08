import pytest

from concierge.phone import mask_phone, normalize_phone_domestic, normalize_phone_e164, phones_match


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("+81-90-1234-5678", "09012345678"),
        ("81-90-1234-5678", "09012345678"),
        ("090-1234-5678", "09012345678"),
        ("090 1234 5678", "09012345678"),
        ("(090)1234-5678", "09012345678"),
        ("", None),
        (None, None),
    ],
)
def test_normalize_phone_domestic(raw, expected):
    assert normalize_phone_domestic(raw) == expected


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("090-1234-5678", "+819012345678"),
        ("+81 90 1234 5678", "+819012345678"),
        ("819012345678", "+819012345678"),
        ("9012345678", "+819012345678"),
        ("", ""),
    ],
)
def test_normalize_phone_e164(raw, expected):
    assert normalize_phone_e164(raw) == expected


def test_phones_match_across_formats():
    assert phones_match("+81-90-1234-5678", "090-1234-5678")
    assert phones_match("819012345678", "09012345678")
    assert not phones_match("090-1234-5678", "090-1234-5679")
    assert not phones_match(None, "090-1234-5678")


def test_mask_phone_hides_middle_digits():
    masked = mask_phone("090-1234-5678")
    assert masked.startswith("+81")
    assert masked.endswith("78")
    assert "1234" not in masked
