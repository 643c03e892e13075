import pytest

from arena.services.game.grading import (
    auto_grade,
    group_answers,
    is_similar,
    levenshtein,
    normalize_answer,
    score_delta,
    similarity,
)


def _answer(answer_id, text):
    return {'id': answer_id, 'contestant_id': answer_id, 'answer_text': text}


def test_normalized_istanbul_is_exact_match():
    assert similarity('istanbul', normalize_answer('İstanbul ')) == 1.0


def test_one_edit_typo_is_similar():
    assert similarity('ankara', 'ankra') >= 0.8
    assert is_similar('ankara', 'ankra')


def test_different_city_is_not_similar():
    assert similarity('ankara', 'izmir') < 0.8
    assert not is_similar('ankara', 'izmir')


@pytest.mark.parametrize('a,b,expected', [
    ('', '', 0),
    ('abc', '', 3),
    ('kitten', 'sitting', 3),
    ('flaw', 'lawn', 2),
])
def test_levenshtein(a, b, expected):
    assert levenshtein(a, b) == expected


def test_auto_grade_trims_and_rejects_blank():
    answers = [_answer(1, ' B '), _answer(2, 'A'), _answer(3, ''), _answer(4, '   ')]
    grades = auto_grade(answers, ['B'], 10)
    assert grades == [(1, True, 10), (2, False, 0), (3, False, 0), (4, False, 0)]


def test_auto_grade_is_case_sensitive_on_keys():
    assert auto_grade([_answer(1, 'b')], ['B'], 10) == [(1, False, 0)]


def test_group_answers_partitions_everything():
    answers = [
        _answer(1, 'Ankara'),
        _answer(2, 'ankra'),
        _answer(3, '  ANKARA '),
        _answer(4, 'Izmir'),
        _answer(5, ''),
        _answer(6, '   '),
    ]
    groups = group_answers(answers, ['Ankara'])
    assert [a['id'] for a in groups['correct']] == [1, 2, 3]
    assert [a['id'] for a in groups['incorrect']] == [4]
    assert [a['id'] for a in groups['empty']] == [5, 6]

    seen = [a['id'] for group in groups.values() for a in group]
    assert sorted(seen) == [1, 2, 3, 4, 5, 6]


def test_group_answers_with_several_keys():
    groups = group_answers([_answer(1, 'Constantinople'), _answer(2, 'Byzantium')], ['Istanbul', 'Constantinople'])
    assert [a['id'] for a in groups['correct']] == [1]
    assert [a['id'] for a in groups['incorrect']] == [2]


def test_score_delta_is_idempotent_for_same_points():
    assert score_delta(None, 10) == 10
    assert score_delta(10, 10) == 0
    assert score_delta(10, 0) == -10
