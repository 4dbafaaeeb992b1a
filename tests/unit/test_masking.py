"""Tests for contact display masks."""

import pytest

from src.identity.core.masking import mask_email, mask_mobile

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("", ""),
        ("abc.com", "abc.com"),
        ("1@abc.com", "1*@abc.com"),
        ("123@abc.com", "123*@abc.com"),
        ("123456@abc.com", "123*@abc.com"),
    ],
)
def test_mask_email(value, expected):
    assert mask_email(value) == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("", ""),
        ("1-23", "1-23*"),
        ("1-234", "1-234*"),
        ("1-22260", "1-222*60"),
        ("1-222606", "1-222*606"),
        ("1-2226060809", "1-222*809"),
    ],
)
def test_mask_mobile(value, expected):
    assert mask_mobile(value) == expected
