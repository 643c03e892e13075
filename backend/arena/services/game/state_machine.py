"""Round lifecycle of one competition.

States: IDLE -> QUESTION_ACTIVE -> LOCKED -> (GRADING ->) REVEAL -> IDLE
        REVEAL -> QUESTION_ACTIVE when the moderator starts the next question

Each step persists its snapshot before touching in-memory state, so a
PersistenceFailure leaves the machine where it was and nothing is
broadcast. Work that spans several storage calls (lock, grading) checks
that its round is still current before applying the result.
Lock closes submissions first and announces LOCKED only together with
the GRADING or REVEAL step that follows it.
"""

import logging
import time
from typing import Iterable, Optional

from arena.errors import DuplicateSubmission, GameError, InvalidInput, InvalidState, NotFound, Result

from . import grading
from .types import (
    REVEAL_COMPLETE_STEP,
    ContestantStatus,
    LifecycleState,
    ProgressionMode,
    QUESTION_FIELDS,
    Question,
    reveal_step_name,
)

logger = logging.getLogger(__name__)

S = LifecycleState

ALLOWED_TRANSITIONS = {
    S.IDLE: {S.QUESTION_ACTIVE},
    S.QUESTION_ACTIVE: {S.LOCKED},
    S.LOCKED: {S.GRADING, S.REVEAL},
    S.GRADING: {S.REVEAL},
    S.REVEAL: {S.IDLE, S.QUESTION_ACTIVE},
}

PROGRESSION_SETTING = 'reveal_progression_mode'


def can_transition(current: LifecycleState, target: LifecycleState) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class GameStateMachine:
    def __init__(self, competition_id, store, broadcaster, clock, *,
                 default_progression: str = ProgressionMode.AUTO.value,
                 strict_transitions: bool = False,
                 similarity_threshold: float = grading.SIMILARITY_THRESHOLD,
                 grading_message: str = 'Adjudicators are reviewing answers...'):
        self.competition_id = competition_id
        self.store = store
        self.broadcaster = broadcaster
        self.clock = clock
        self.default_progression = default_progression
        self.strict_transitions = strict_transitions
        self.similarity_threshold = similarity_threshold
        self.grading_message = grading_message

        self.state = S.IDLE
        self.current_question: Optional[Question] = None
        self.time_remaining = 0
        self.submitted = set()
        self.accepting_answers = False
        self.reveal_step = 0
        self.question_started_at: Optional[float] = None
        # Bumped on every start/reset; stale storage round-trips compare against it
        self._round_id = 0

    # ---- snapshots ----

    def snapshot(self) -> dict:
        return {
            'competition_id': self.competition_id,
            'state': self.state.value,
            'current_question': self.current_question.metadata() if self.current_question else None,
            'time_remaining': self.time_remaining,
            'answered_players': sorted(self.submitted),
            'reveal_step': self.reveal_step,
        }

    def progression_mode(self) -> ProgressionMode:
        raw = self.store.get_setting(PROGRESSION_SETTING, self.default_progression)
        try:
            return ProgressionMode(str(raw).upper())
        except ValueError:
            logger.warning(f"[setting-invalid] competition={self.competition_id} {PROGRESSION_SETTING}={raw!r}")
            return ProgressionMode(self.default_progression)

    # ---- internals ----

    def _check_transition(self, target: LifecycleState, source: Optional[LifecycleState] = None) -> Optional[Result]:
        """Warn about off-table transitions; reject them only in strict mode."""
        source = source or self.state
        if can_transition(source, target):
            return None
        logger.warning(
            f"[transition-warn] competition={self.competition_id} {source.value} -> {target.value} not in table"
        )
        if self.strict_transitions:
            return Result.failure(InvalidState(f"cannot move from {source.value} to {target.value}"))
        return None

    def _persist(self, target: LifecycleState, question: Optional[Question]) -> None:
        self.store.save_session_state(target.value, question.id if question else None)

    def _set_state(self, target: LifecycleState) -> None:
        previous = self.state
        self.state = target
        logger.info(f"[state] competition={self.competition_id} {previous.value} -> {target.value}")
        self.broadcaster.publish('state_changed', self.snapshot())

    def _is_current(self, round_id: int) -> bool:
        return self._round_id == round_id and self.current_question is not None

    def _clear_round(self) -> None:
        self._round_id += 1
        self.current_question = None
        self.question_started_at = None
        self.time_remaining = 0
        self.submitted = set()
        self.accepting_answers = False
        self.reveal_step = 0

    # ---- round lifecycle ----

    def start_question(self, question_id) -> Result:
        record = self.store.get_question(question_id)
        if not record:
            return Result.failure(NotFound(f"question {question_id} not found"))
        rejected = self._check_transition(S.QUESTION_ACTIVE)
        if rejected:
            return rejected

        active_ids = [q['id'] for q in self.store.list_active_questions()]
        index = active_ids.index(record['id']) + 1 if record['id'] in active_ids else 0
        question = Question.from_record(record, index, len(active_ids))
        quote = self.store.get_random_quote()
        self._persist(S.QUESTION_ACTIVE, question)

        self.clock.stop()
        self._clear_round()
        self.current_question = question
        self.time_remaining = question.duration
        self.question_started_at = time.time()
        self.accepting_answers = True
        self._set_state(S.QUESTION_ACTIVE)

        self.broadcaster.publish('question_started', {'question': question.to_dict(), 'quote': quote})
        if question.duration <= 0:
            # The countdown would never tick, so nothing would ever lock it
            logger.warning(f"[no-countdown] competition={self.competition_id} question={question.id}")
            self.lock()
        else:
            self.clock.start(question.duration, self.tick)
        return Result.success(question_id=question.id, index=question.index, total=question.total)

    def tick(self) -> Optional[Result]:
        if self.state is not S.QUESTION_ACTIVE:
            logger.info(f"[tick-stale] competition={self.competition_id} state={self.state.value}")
            self.clock.stop()
            return None
        self.time_remaining = max(0, self.time_remaining - 1)
        self.broadcaster.publish('countdown_tick', {
            'time_remaining': self.time_remaining,
            'server_time': int(time.time() * 1000),
        })
        if self.time_remaining == 0:
            return self.lock()
        return None

    def lock(self) -> Result:
        question = self.current_question
        if question is None:
            return Result.failure(InvalidState('no active question to lock'))
        rejected = self._check_transition(S.LOCKED)
        if rejected:
            return rejected
        self.clock.stop()

        # Submissions close now; LOCKED is announced together with the
        # GRADING or REVEAL step once every storage call has succeeded.
        round_id = self._round_id
        was_accepting = self.accepting_answers
        self.accepting_answers = False
        try:
            self._persist(S.LOCKED, question)
            self._synthesize_missing_answers(question)
            if not self._is_current(round_id):
                return self._abort(question, 'lock')

            if question.is_open_form:
                return self._start_grading(question, round_id, announce_lock=True)

            answers = self.store.list_answers(question.id)
            grades = grading.auto_grade(answers, question.accepted_keys, question.points)
            if grades:
                self.store.apply_grades(grades, question_id=question.id)
            if not self._is_current(round_id):
                return self._abort(question, 'auto-grade')
            return self._reveal(question, round_id, announce_lock=True)
        except GameError:
            if self._is_current(round_id):
                self.accepting_answers = was_accepting
            logger.error(f"[lock-failed] competition={self.competition_id} question={question.id}")
            raise

    def _synthesize_missing_answers(self, question: Question) -> None:
        """Give every online contestant who stayed silent an empty answer."""
        answered = {a['contestant_id'] for a in self.store.list_answers(question.id)}
        for contestant in self.store.list_contestants():
            if contestant['id'] in answered or contestant['status'] != ContestantStatus.ONLINE.value:
                continue
            try:
                self.store.record_answer(question.id, contestant['id'], '', 0)
            except DuplicateSubmission:
                # A late submission landed between the listing and this insert
                continue

    def _abort(self, question: Question, phase: str) -> Result:
        logger.info(f"[grade-abort] competition={self.competition_id} question={question.id} phase={phase}")
        return Result.failure(InvalidState('round changed while grading'))

    def _start_grading(self, question: Question, round_id: int, announce_lock: bool = False) -> Result:
        rejected = self._check_transition(S.GRADING, S.LOCKED if announce_lock else None)
        if rejected:
            return rejected
        answers = self.store.list_answers(question.id)
        groups = grading.group_answers(answers, question.accepted_keys, self.similarity_threshold)
        if not self._is_current(round_id):
            return self._abort(question, 'grouping')
        self._persist(S.GRADING, question)
        if announce_lock:
            self._set_state(S.LOCKED)
        self._set_state(S.GRADING)

        self.broadcaster.publish('review_data', {
            'question_id': question.id,
            'question_content': question.content,
            'correct_keys': list(question.accepted_keys),
            'points': question.points,
            'groups': groups,
        })
        self.broadcaster.publish('grading_status', {'message': self.grading_message})
        return Result.success(state=self.state.value, answers=len(answers))

    def _reveal(self, question: Question, round_id: int, announce_lock: bool = False) -> Result:
        rejected = self._check_transition(S.REVEAL, S.LOCKED if announce_lock else None)
        if rejected:
            return rejected
        answers = self.store.list_answers(question.id)
        leaderboard = self.store.get_leaderboard()
        mode = self.progression_mode()
        if not self._is_current(round_id):
            return self._abort(question, 'reveal')
        self._persist(S.REVEAL, question)

        if announce_lock:
            self._set_state(S.LOCKED)
        self.reveal_step = 0
        self._set_state(S.REVEAL)
        self.broadcaster.publish('results', {
            'question': {
                'id': question.id,
                'content': question.content,
                'type': question.kind.value,
                'correct_answer': question.canonical_answer,
                'points': question.points,
                'media_url': question.media_url,
            },
            'answers': answers,
            'leaderboard': leaderboard,
            'progression_mode': mode.value,
        })
        if mode is ProgressionMode.MANUAL:
            self.broadcaster.publish('reveal_progress', self._step_payload())
        return Result.success(state=self.state.value, progression_mode=mode.value)

    def _step_payload(self) -> dict:
        return {
            'step': self.reveal_step,
            'name': reveal_step_name(self.reveal_step),
            'complete': self.reveal_step >= REVEAL_COMPLETE_STEP,
        }

    # ---- submissions ----

    def submit_answer(self, contestant_id, text: str, time_remaining=None) -> Result:
        if self.state is not S.QUESTION_ACTIVE or self.current_question is None or not self.accepting_answers:
            return Result.failure(InvalidState('answers are not being accepted'))
        if contestant_id in self.submitted:
            return Result.failure(DuplicateSubmission('an answer was already recorded for this question'))

        question = self.current_question
        round_id = self._round_id
        remaining = self.time_remaining
        if time_remaining is not None:
            try:
                remaining = min(max(0, int(time_remaining)), self.time_remaining)
            except (TypeError, ValueError):
                pass

        try:
            answer = self.store.record_answer(question.id, contestant_id, text or '', remaining)
        except DuplicateSubmission as exc:
            self.submitted.add(contestant_id)
            return Result.failure(exc)
        except NotFound as exc:
            return Result.failure(exc)

        # Lock may have run while the answer was being written
        if self.state is not S.QUESTION_ACTIVE or self._round_id != round_id or not self.accepting_answers:
            logger.info(
                f"[submit-reject] competition={self.competition_id} contestant={contestant_id} state={self.state.value}"
            )
            self.store.void_answer(answer['id'])
            return Result.failure(InvalidState('answers are locked'))

        self.submitted.add(contestant_id)
        self.broadcaster.publish('submission_status', {'contestant_id': contestant_id, 'status': 'answered'})
        return Result.success(answer_id=answer['id'])

    # ---- adjudication ----

    def grade_answers(self, answer_ids: Iterable, is_correct: bool, points: int) -> Result:
        """Bulk group approval; a single manual grade is a one-item list."""
        if self.state is not S.GRADING or self.current_question is None:
            return Result.failure(InvalidState('grading is not open'))
        ids = list(answer_ids or [])
        try:
            points = max(0, int(points or 0))
        except (TypeError, ValueError):
            points = 0
        if not ids:
            return Result.success(count=0)
        try:
            graded = self.store.grade_answers_bulk(ids, bool(is_correct), points, question_id=self.current_question.id)
        except NotFound as exc:
            return Result.failure(exc)
        return Result.success(count=len(graded))

    def commit_grading(self, grades: Optional[Iterable[dict]] = None) -> Result:
        if self.state is not S.GRADING or self.current_question is None:
            return Result.failure(InvalidState('no grading in progress'))
        question = self.current_question
        round_id = self._round_id
        if grades:
            try:
                triples = [
                    (g['answer_id'], bool(g.get('is_correct')), max(0, int(g.get('points') or 0)))
                    for g in grades
                ]
            except (KeyError, TypeError, ValueError):
                return Result.failure(InvalidInput('each grade needs an answer_id and integer points'))
            try:
                self.store.apply_grades(triples, question_id=question.id)
            except NotFound as exc:
                return Result.failure(exc)
            if not self._is_current(round_id):
                return self._abort(question, 'commit')
        return self._reveal(question, round_id)

    # ---- reveal ----

    def advance_reveal_step(self) -> Result:
        if self.state is not S.REVEAL:
            return Result.failure(InvalidState('no reveal in progress'))
        if self.progression_mode() is not ProgressionMode.MANUAL:
            return Result.failure(InvalidState('reveal progression is automatic'))
        if self.reveal_step >= REVEAL_COMPLETE_STEP:
            return Result.failure(InvalidState('reveal sequence already complete'))
        self.reveal_step += 1
        payload = self._step_payload()
        self.broadcaster.publish('reveal_step', payload)
        return Result.success(**payload)

    # ---- question bank ----

    def _questions_changed(self) -> None:
        self.broadcaster.publish('questions_updated', self.store.list_active_questions())

    def add_question(self, fields: dict) -> Result:
        changes = {k: v for k, v in (fields or {}).items() if k in QUESTION_FIELDS}
        if 'content' not in changes:
            return Result.failure(InvalidInput('question content is required'))
        try:
            question = self.store.add_question(**changes)
        except InvalidInput as exc:
            return Result.failure(exc)
        logger.info(f"[question-add] competition={self.competition_id} question={question['id']}")
        self._questions_changed()
        return Result.success(question=question)

    def update_question(self, question_id, fields: dict) -> Result:
        changes = {k: v for k, v in (fields or {}).items() if k in QUESTION_FIELDS}
        try:
            question = self.store.update_question(question_id, **changes)
        except (InvalidInput, NotFound) as exc:
            return Result.failure(exc)
        logger.info(f"[question-update] competition={self.competition_id} question={question_id}")
        self._questions_changed()
        return Result.success(question=question)

    def remove_question(self, question_id) -> Result:
        """Deactivate a question; a round already running on it carries on."""
        try:
            self.store.deactivate_question(question_id)
        except NotFound as exc:
            return Result.failure(exc)
        logger.info(f"[question-remove] competition={self.competition_id} question={question_id}")
        self._questions_changed()
        return Result.success(question_id=question_id)

    # ---- reset ----

    def go_idle(self) -> Result:
        rejected = self._check_transition(S.IDLE)
        if rejected:
            return rejected
        return self.reset_round()

    def reset_round(self) -> Result:
        self.clock.stop()
        self._persist(S.IDLE, None)
        self._clear_round()
        self._set_state(S.IDLE)
        return Result.success(state=self.state.value)

    def reset_competition(self) -> Result:
        self.store.clear_competition_data()
        self.reset_round()
        self.broadcaster.publish('competition_reset', {})
        self.broadcaster.publish('contestants_updated', self.store.list_contestants())
        self.broadcaster.publish('leaderboard_updated', self.store.get_leaderboard())
        logger.info(f"[reset] competition={self.competition_id}")
        return Result.success(state=self.state.value)

    def shutdown(self) -> None:
        self.clock.stop()

    # ---- presence ----

    def register_contestant(self, name: str, table_no=None, socket_id=None) -> Result:
        contestant = self.store.upsert_contestant(name.strip(), table_no, socket_id)
        self.broadcaster.publish('contestants_updated', self.store.list_contestants())
        return Result.success(contestant=contestant)

    def contestant_disconnected(self, contestant_id) -> Result:
        try:
            self.store.set_contestant_status(contestant_id, ContestantStatus.OFFLINE.value)
        except NotFound as exc:
            return Result.failure(exc)
        self.broadcaster.publish('contestants_updated', self.store.list_contestants())
        return Result.success(contestant_id=contestant_id)
