# pylint: disable=missing-module-docstring,missing-function-docstring

from adapters.llm.chunking import split_sentences
from constants import REPLY_HARD_CAP_CHARS


def test_sentence_boundary_splits_complete_sentences():
    sentences, rest = split_sentences("Hello there, friend. This should stay")

    assert sentences == ["Hello there, friend."]
    assert rest == " This should stay"


def test_short_sentence_merges_into_next():
    sentences, rest = split_sentences("Hi. How are you doing today? More")

    assert sentences == ["Hi. How are you doing today?"]
    assert rest == " More"


def test_trailing_break_waits_for_more_text_unless_final():
    assert split_sentences("That will cost 3.") == ([], "That will cost 3.")
    assert split_sentences("That will cost 3.", final=True) == (["That will cost 3."], "")


def test_decimal_point_is_not_a_boundary():
    sentences, rest = split_sentences("Pi is roughly 3.14 as you know")

    assert sentences == []
    assert rest == "Pi is roughly 3.14 as you know"


def test_hard_cap_forces_split_when_no_break_chars():
    sentences, rest = split_sentences("x" * (REPLY_HARD_CAP_CHARS + 5))

    assert sentences == ["x" * REPLY_HARD_CAP_CHARS]
    assert rest == "xxxxx"


def test_hard_cap_prefers_last_space():
    buf = "a" * 200 + " " + "b" * 100
    sentences, rest = split_sentences(buf)

    assert sentences == ["a" * 200]
    assert rest.strip() == "b" * 100


def test_final_flush_never_returns_empty_sentences():
    assert split_sentences("   ", final=True) == ([], "")
    assert split_sentences("", final=True) == ([], "")
