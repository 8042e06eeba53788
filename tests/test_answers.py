from __future__ import annotations

import pytest

from quickcal.agent.answers import AnswerKind, classify_answer, is_affirmative, is_negative


@pytest.mark.parametrize("text", [
    "yes", "Y", "OK", "okay!", "ok, go ahead", "はい", "はい。", "登録して", "進めてください",
    "お願いします", "おねがい します", "実行",
])
def test_affirmative(text):
    assert classify_answer(text) == AnswerKind.AFFIRMATIVE


@pytest.mark.parametrize("text", [
    "no", "N", "No thanks", "いいえ", "キャンセル", "やめる", "中止で", "停止",
])
def test_negative(text):
    assert classify_answer(text) == AnswerKind.NEGATIVE


@pytest.mark.parametrize("text", ["", "  ", "maybe", "yesterday", "nothing", "okapi", None])
def test_neither(text):
    assert classify_answer(text) == AnswerKind.NEITHER


def test_negative_wins_when_both_match():
    assert is_affirmative("yes... no, wait")
    assert is_negative("yes... no, wait")
    assert classify_answer("yes... no, wait") == AnswerKind.NEGATIVE
    assert classify_answer("いいえ、登録しないで") == AnswerKind.NEGATIVE
