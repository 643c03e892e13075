"""SQLAlchemy-backed storage collaborator for one competition.

Every method returns plain dicts so the engine never holds ORM objects
across a round. Database errors roll the session back and surface as
``PersistenceFailure``.
"""

import json
import logging
from functools import wraps
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from arena import db
from arena.errors import DuplicateSubmission, InvalidInput, NotFound, PersistenceFailure
from arena.models import (
    Answer,
    Competition,
    CompetitionSession,
    Contestant,
    Question,
    Quote,
    Setting,
)
from arena.services.game.grading import score_delta
from arena.services.game.types import QUESTION_FIELDS, QuestionKind

logger = logging.getLogger(__name__)


def _persistent(method):
    """Roll back and raise PersistenceFailure on any database error."""

    @wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error(f"[storage-error] op={method.__name__} error={exc}", exc_info=True)
            raise PersistenceFailure(f"{method.__name__} failed") from exc

    return wrapper


def _checked_question_fields(fields: dict) -> dict:
    """Validate question fields; only the keys present are checked."""
    if 'content' in fields and not str(fields['content'] or '').strip():
        raise InvalidInput('question content is required')
    if 'type' in fields and fields['type'] not in {kind.value for kind in QuestionKind}:
        raise InvalidInput(f"unknown question type {fields['type']!r}")
    for key in ('points', 'duration', 'order_index'):
        if key not in fields:
            continue
        try:
            fields[key] = int(fields[key])
        except (TypeError, ValueError):
            raise InvalidInput(f"{key} must be an integer")
    if fields.get('duration', 1) <= 0:
        raise InvalidInput('duration must be a positive number of seconds')
    if fields.get('points', 0) < 0:
        raise InvalidInput('points cannot be negative')
    for key in ('options', 'correct_keys'):
        if key in fields:
            fields[key] = json.dumps(list(fields[key])) if fields[key] else None
    return fields


@_persistent
def list_active_competitions() -> List[dict]:
    rows = (
        Competition.query.filter_by(status='ACTIVE')
        .order_by(Competition.created_at.desc(), Competition.id.desc())
        .all()
    )
    return [c.to_dict() for c in rows]


@_persistent
def create_competition(name: str, contestant_count: int = 0, jury_count: int = 0) -> dict:
    competition = Competition(name=name, contestant_count=contestant_count, jury_count=jury_count)
    db.session.add(competition)
    db.session.commit()
    return competition.to_dict()


@_persistent
def get_competition(competition_id) -> Optional[dict]:
    competition = db.session.get(Competition, competition_id)
    return competition.to_dict() if competition else None


@_persistent
def end_competition(competition_id: int) -> dict:
    competition = db.session.get(Competition, competition_id)
    if not competition:
        raise NotFound(f"competition {competition_id} not found")
    competition.status = 'ENDED'
    db.session.add(competition)
    db.session.commit()
    return competition.to_dict()


class CompetitionStore:
    """Storage contract used by ``GameStateMachine``, scoped to one competition."""

    def __init__(self, competition_id: int):
        self.competition_id = competition_id

    # ---- questions ----

    def _question_query(self):
        return Question.query.filter(
            (Question.competition_id == self.competition_id) | (Question.competition_id.is_(None))
        )

    @_persistent
    def get_question(self, question_id) -> Optional[dict]:
        question = self._question_query().filter(Question.id == question_id).first()
        return question.to_dict() if question else None

    @_persistent
    def list_active_questions(self) -> List[dict]:
        rows = (
            self._question_query()
            .filter(Question.is_active.is_(True))
            .order_by(Question.order_index, Question.id)
            .all()
        )
        return [q.to_dict() for q in rows]

    @_persistent
    def add_question(self, content, type='CLOSED_FORM', options=None, correct_keys=None, points=10,
                     duration=30, category=None, media_url=None, order_index=0, shared=False) -> dict:
        fields = _checked_question_fields({
            'content': content,
            'type': type,
            'options': options,
            'correct_keys': list(correct_keys or []),
            'points': points,
            'duration': duration,
            'category': category,
            'media_url': media_url,
            'order_index': order_index,
        })
        question = Question(competition_id=None if shared else self.competition_id, **fields)
        db.session.add(question)
        db.session.commit()
        return question.to_dict()

    @_persistent
    def update_question(self, question_id, **changes) -> dict:
        question = self._question_query().filter(Question.id == question_id).first()
        if not question:
            raise NotFound(f"question {question_id} not found")
        fields = _checked_question_fields({k: v for k, v in changes.items() if k in QUESTION_FIELDS})
        for key, value in fields.items():
            setattr(question, key, value)
        db.session.add(question)
        db.session.commit()
        return question.to_dict()

    @_persistent
    def deactivate_question(self, question_id) -> dict:
        """Hide a question from the active set; its answers stay."""
        question = self._question_query().filter(Question.id == question_id).first()
        if not question:
            raise NotFound(f"question {question_id} not found")
        question.is_active = False
        db.session.add(question)
        db.session.commit()
        return question.to_dict()

    # ---- contestants ----

    def _contestant(self, contestant_id) -> Optional[Contestant]:
        return Contestant.query.filter_by(id=contestant_id, competition_id=self.competition_id).first()

    @_persistent
    def list_contestants(self) -> List[dict]:
        rows = (
            Contestant.query.filter_by(competition_id=self.competition_id)
            .order_by(Contestant.table_no, Contestant.id)
            .all()
        )
        return [c.to_dict() for c in rows]

    @_persistent
    def get_contestant(self, contestant_id) -> Optional[dict]:
        contestant = self._contestant(contestant_id)
        return contestant.to_dict() if contestant else None

    @_persistent
    def upsert_contestant(self, name: str, table_no=None, socket_id=None) -> dict:
        """Create the contestant, or take over the one already seated at ``table_no``.

        A table seats one contestant per competition; logging in at an
        occupied table renames its contestant and keeps the score.
        """
        if table_no is not None:
            contestant = Contestant.query.filter_by(competition_id=self.competition_id, table_no=table_no).first()
        else:
            contestant = Contestant.query.filter_by(
                competition_id=self.competition_id, name=name, table_no=None
            ).first()
        if not contestant:
            contestant = Contestant(competition_id=self.competition_id, name=name, table_no=table_no)
        contestant.name = name
        if contestant.status != 'DISQUALIFIED':
            contestant.status = 'ONLINE'
        contestant.socket_id = socket_id
        db.session.add(contestant)
        db.session.commit()
        return contestant.to_dict()

    @_persistent
    def increment_score(self, contestant_id, delta: int) -> None:
        contestant = self._contestant(contestant_id)
        if not contestant:
            raise NotFound(f"contestant {contestant_id} not found")
        contestant.total_score = (contestant.total_score or 0) + int(delta)
        db.session.add(contestant)
        db.session.commit()

    @_persistent
    def set_contestant_status(self, contestant_id, status: str) -> None:
        contestant = self._contestant(contestant_id)
        if not contestant:
            raise NotFound(f"contestant {contestant_id} not found")
        contestant.status = status
        if status == 'OFFLINE':
            contestant.socket_id = None
        db.session.add(contestant)
        db.session.commit()

    @_persistent
    def get_leaderboard(self) -> List[dict]:
        rows = (
            Contestant.query.filter(
                Contestant.competition_id == self.competition_id,
                Contestant.status != 'DISQUALIFIED',
            )
            .order_by(Contestant.total_score.desc(), Contestant.name.asc(), Contestant.id.asc())
            .all()
        )
        return [c.to_leaderboard_dict() for c in rows]

    # ---- answers ----

    def _answer_query(self):
        return Answer.query.join(Contestant, Answer.contestant_id == Contestant.id).filter(
            Contestant.competition_id == self.competition_id
        )

    @_persistent
    def has_answer(self, question_id, contestant_id) -> bool:
        return Answer.query.filter_by(question_id=question_id, contestant_id=contestant_id).first() is not None

    @_persistent
    def record_answer(self, question_id, contestant_id, text: str, time_remaining: int) -> dict:
        if not self._contestant(contestant_id):
            raise NotFound(f"contestant {contestant_id} not found")
        if self.has_answer(question_id, contestant_id):
            raise DuplicateSubmission('an answer was already recorded for this question')
        answer = Answer(
            question_id=question_id,
            contestant_id=contestant_id,
            answer_text=text or '',
            time_remaining=max(0, int(time_remaining or 0)),
        )
        db.session.add(answer)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise DuplicateSubmission('an answer was already recorded for this question') from exc
        return answer.to_dict()

    @_persistent
    def list_answers(self, question_id) -> List[dict]:
        rows = (
            self._answer_query()
            .filter(Answer.question_id == question_id)
            .order_by(Answer.submit_time.asc(), Answer.id.asc())
            .all()
        )
        return [a.to_dict() for a in rows]

    def _apply_grade(self, answer: Answer, is_correct: bool, points: int) -> None:
        delta = score_delta(answer.points_awarded, points)
        answer.is_correct = bool(is_correct)
        answer.points_awarded = int(points)
        db.session.add(answer)
        if delta:
            contestant = answer.contestant
            contestant.total_score = (contestant.total_score or 0) + delta
            db.session.add(contestant)

    def _load_answers(self, answer_ids: Iterable, question_id=None) -> List[Answer]:
        ids = list(dict.fromkeys(answer_ids))
        query = self._answer_query().filter(Answer.id.in_(ids))
        if question_id is not None:
            query = query.filter(Answer.question_id == question_id)
        answers = query.all()
        missing = set(ids) - {a.id for a in answers}
        if missing:
            raise NotFound(f"answers not found: {sorted(missing)}")
        return answers

    @_persistent
    def grade_answer(self, answer_id, is_correct: bool, points: int, question_id=None) -> dict:
        answer = self._load_answers([answer_id], question_id)[0]
        self._apply_grade(answer, is_correct, points)
        db.session.commit()
        return answer.to_dict()

    @_persistent
    def grade_answers_bulk(self, answer_ids, is_correct: bool, points: int, question_id=None) -> List[dict]:
        answers = self._load_answers(answer_ids, question_id)
        for answer in answers:
            self._apply_grade(answer, is_correct, points)
        db.session.commit()
        return [a.to_dict() for a in answers]

    @_persistent
    def apply_grades(self, grades: Iterable, question_id=None) -> List[dict]:
        """Apply ``(answer_id, is_correct, points)`` triples in one transaction."""
        grades = list(grades)
        answers = {a.id: a for a in self._load_answers([g[0] for g in grades], question_id)}
        for answer_id, is_correct, points in grades:
            self._apply_grade(answers[answer_id], is_correct, points)
        db.session.commit()
        return [a.to_dict() for a in answers.values()]

    @_persistent
    def void_answer(self, answer_id) -> None:
        """Blank a submission that arrived after lock and undo its score."""
        answer = self._answer_query().filter(Answer.id == answer_id).first()
        if not answer:
            return
        answer.answer_text = ''
        answer.time_remaining = 0
        if answer.is_correct is not None:
            self._apply_grade(answer, False, 0)
        db.session.add(answer)
        db.session.commit()

    # ---- competition-wide ----

    @_persistent
    def clear_competition_data(self) -> None:
        contestant_ids = [
            row.id for row in Contestant.query.with_entities(Contestant.id).filter_by(competition_id=self.competition_id)
        ]
        if contestant_ids:
            Answer.query.filter(Answer.contestant_id.in_(contestant_ids)).delete(synchronize_session=False)
        Contestant.query.filter_by(competition_id=self.competition_id).delete(synchronize_session=False)
        db.session.commit()

    @_persistent
    def get_setting(self, key: str, default=None):
        setting = db.session.get(Setting, key)
        return setting.value if setting else default

    @_persistent
    def set_setting(self, key: str, value: str, description=None) -> None:
        setting = db.session.get(Setting, key) or Setting(key=key)
        setting.value = value
        if description is not None:
            setting.description = description
        db.session.add(setting)
        db.session.commit()

    @_persistent
    def get_random_quote(self) -> Optional[dict]:
        quote = Quote.query.order_by(func.random()).first()
        return quote.to_dict() if quote else None

    @_persistent
    def save_session_state(self, state: str, question_id=None) -> None:
        session = CompetitionSession.query.filter_by(competition_id=self.competition_id).first()
        if not session:
            session = CompetitionSession(competition_id=self.competition_id)
        session.state = state
        session.current_question_id = question_id
        db.session.add(session)
        db.session.commit()

    @_persistent
    def get_session_state(self) -> Optional[dict]:
        session = CompetitionSession.query.filter_by(competition_id=self.competition_id).first()
        return session.to_dict() if session else None
