from __future__ import annotations

import pytest

from expense_relay.modules.extraction.accounts import (
    ACCOUNT_NAMES,
    match_account_in_text,
    normalize_account,
    resolve_account,
)


def test_override_is_normalized_case_insensitively():
    assert resolve_account(override="GoPay", model_account=None, text_candidates=[]) == "gopay"


def test_invalid_override_is_dropped_and_text_decides():
    # bca is defined before flazz emoney, so it wins the tie.
    result = resolve_account(
        override="not-a-real-account",
        model_account=None,
        text_candidates=["paid via bca flazz"],
    )
    assert result == "bca"


def test_override_beats_model_and_text():
    result = resolve_account(
        override="flazz",
        model_account="cash",
        text_candidates=["paid with gopay"],
    )
    assert result == "flazz emoney"


def test_model_account_beats_text():
    result = resolve_account(override=None, model_account="ShopeePay", text_candidates=["cash"])
    assert result == "shopeepay"


def test_unknown_model_account_falls_through_to_text():
    result = resolve_account(
        override=None, model_account="visa", text_candidates=[None, "", "topped up via Bank Jago"]
    )
    assert result == "jago cloudthingy"


def test_candidates_are_scanned_in_priority_order():
    result = resolve_account(
        override=None,
        model_account=None,
        text_candidates=["lunch with isaku", "paid cash"],
    )
    assert result == "isaku"


def test_nothing_matches_returns_none():
    assert resolve_account(override=None, model_account=None, text_candidates=["lunch 20"]) is None


def test_resolution_is_deterministic():
    kwargs = {"override": "nope", "model_account": "nope", "text_candidates": ["e-money top up"]}
    assert resolve_account(**kwargs) == resolve_account(**kwargs) == "flazz emoney"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("cash", "cash"),
        ("  CASH ", "cash"),
        ("flazz_emoney", "flazz emoney"),
        ("Flazz   eMoney", "flazz emoney"),
        ("go-pay", "gopay"),
        ("jago", "jago cloudthingy"),
        ("", None),
        (None, None),
        ("cashback", None),
    ],
)
def test_normalize_account(value, expected):
    assert normalize_account(value) == expected


def test_text_match_respects_word_boundaries():
    assert match_account_in_text("got cashback today") is None
    assert match_account_in_text("BCA123") is None
    assert match_account_in_text("paid (cash)") == "cash"
    assert match_account_in_text("via go  pay") == "gopay"


def test_every_canonical_name_normalizes_to_itself():
    for name in ACCOUNT_NAMES:
        assert normalize_account(name) == name
        assert match_account_in_text(f"paid using {name.upper()}") == name
