import pytest

from core.fallback import FALLBACK_RESPONSES, select_fallback


def test_same_message_same_reply():
    assert select_fallback("Hello test") == select_fallback("Hello test")


def test_index_is_code_point_sum_mod_count():
    # "hi" -> 104 + 105 = 209, 209 % 5 == 4
    assert select_fallback("hi") == FALLBACK_RESPONSES[4]
    # "Hello test" sums to 980
    assert select_fallback("Hello test") == FALLBACK_RESPONSES[0]


def test_non_ascii_uses_code_points():
    # U+00E9 is 233, 233 % 5 == 3
    assert select_fallback("é") == FALLBACK_RESPONSES[3]


def test_empty_message_picks_first():
    assert select_fallback("") == FALLBACK_RESPONSES[0]


def test_custom_list_and_empty_list():
    assert select_fallback("ab", ["x", "y"]) == "y"  # 97 + 98 = 195
    with pytest.raises(ValueError):
        select_fallback("hi", [])
