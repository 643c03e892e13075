"""Answer grading: automatic grading, fuzzy grouping and score deltas.

Everything here is pure; the state machine feeds in answer dicts as
returned by the storage layer and persists whatever comes back.
"""

import unicodedata
from typing import Dict, Iterable, List, Sequence, Tuple

SIMILARITY_THRESHOLD = 0.8


def normalize_answer(text: str) -> str:
    """Case-fold, trim and strip diacritics so 'İstanbul ' matches 'istanbul'."""
    if not text:
        return ''
    decomposed = unicodedata.normalize('NFKD', text)
    stripped = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    return ' '.join(stripped.casefold().split())


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    # Single rolling row
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1 - distance / max(len(a), len(b)); two empty strings are identical."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def is_similar(a: str, b: str, threshold: float = SIMILARITY_THRESHOLD) -> bool:
    return a == b or similarity(a, b) >= threshold


def matches_any_key(text: str, accepted_keys: Iterable[str], threshold: float = SIMILARITY_THRESHOLD) -> bool:
    normalized = normalize_answer(text)
    if not normalized:
        return False
    return any(is_similar(normalized, normalize_answer(key), threshold) for key in accepted_keys if key)


def auto_grade(answers: Sequence[dict], accepted_keys: Iterable[str], points: int) -> List[Tuple[int, bool, int]]:
    """Grade closed-form answers.

    Returns one ``(answer_id, is_correct, points)`` triple per answer. A
    trimmed answer is correct only if it is one of the accepted keys
    verbatim; blank answers are always wrong.
    """
    keys = {key.strip() for key in accepted_keys if key is not None}
    grades = []
    for answer in answers:
        text = (answer.get('answer_text') or '').strip()
        is_correct = bool(text) and text in keys
        grades.append((answer['id'], is_correct, points if is_correct else 0))
    return grades


def group_answers(answers: Sequence[dict], accepted_keys: Iterable[str],
                  threshold: float = SIMILARITY_THRESHOLD) -> Dict[str, List[dict]]:
    """Pre-sort open-form answers for adjudication.

    The three groups partition ``answers``. The grouping is only a
    suggestion; adjudicator grades always win.
    """
    keys = list(accepted_keys)
    groups = {'correct': [], 'incorrect': [], 'empty': []}
    for answer in answers:
        text = answer.get('answer_text') or ''
        if not text.strip():
            groups['empty'].append(answer)
        elif matches_any_key(text, keys, threshold):
            groups['correct'].append(answer)
        else:
            groups['incorrect'].append(answer)
    return groups


def score_delta(previous_points, new_points) -> int:
    """Change to a contestant's score when an answer is (re)graded.

    An answer contributes exactly its current ``points_awarded``, so grading
    it twice with the same value adds nothing the second time.
    """
    return int(new_points or 0) - int(previous_points or 0)
