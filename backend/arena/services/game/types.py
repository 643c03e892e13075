from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class LifecycleState(str, Enum):
    IDLE = 'IDLE'
    QUESTION_ACTIVE = 'QUESTION_ACTIVE'
    LOCKED = 'LOCKED'
    GRADING = 'GRADING'
    REVEAL = 'REVEAL'


class QuestionKind(str, Enum):
    CLOSED_FORM = 'CLOSED_FORM'
    OPEN_FORM = 'OPEN_FORM'


class ContestantStatus(str, Enum):
    ONLINE = 'ONLINE'
    OFFLINE = 'OFFLINE'
    DISQUALIFIED = 'DISQUALIFIED'


class ProgressionMode(str, Enum):
    AUTO = 'AUTO'
    MANUAL = 'MANUAL'


class Audience(str, Enum):
    MODERATOR = 'moderator'
    CONTESTANT = 'contestant'
    ADJUDICATOR = 'adjudicator'
    SPECTATOR = 'spectator'


REVEAL_STEPS = (
    'suspense',
    'media',
    'question',
    'answers',
    'correct_answer',
    'leaderboard_delta',
    'full_leaderboard',
    'done',
)
# Cursor value at which the manual reveal sequence is complete
REVEAL_COMPLETE_STEP = 6

# Columns a moderator may set when adding or editing a question
QUESTION_FIELDS = (
    'content', 'type', 'options', 'correct_keys', 'points',
    'duration', 'category', 'media_url', 'order_index',
)


def reveal_step_name(step: int) -> str:
    return REVEAL_STEPS[min(max(step, 0), len(REVEAL_STEPS) - 1)]


@dataclass(frozen=True)
class Question:
    """Snapshot of a question for the duration of one round."""

    id: int
    content: str
    kind: QuestionKind
    points: int
    duration: int
    choices: Tuple[str, ...] = ()
    accepted_keys: Tuple[str, ...] = ()
    category: Optional[str] = None
    media_url: Optional[str] = None
    index: int = 0
    total: int = 0

    @classmethod
    def from_record(cls, record: dict, index: int, total: int) -> 'Question':
        try:
            kind = QuestionKind(record.get('type') or QuestionKind.CLOSED_FORM.value)
        except ValueError:
            kind = QuestionKind.CLOSED_FORM
        return cls(
            id=record['id'],
            content=record.get('content') or '',
            kind=kind,
            points=int(record.get('points') or 0),
            duration=int(record.get('duration') or 0),
            choices=tuple(record.get('options') or ()),
            accepted_keys=tuple(record.get('correct_keys') or ()),
            category=record.get('category'),
            media_url=record.get('media_url'),
            index=index,
            total=total,
        )

    @property
    def canonical_answer(self) -> str:
        return self.accepted_keys[0] if self.accepted_keys else ''

    @property
    def is_open_form(self) -> bool:
        return self.kind is QuestionKind.OPEN_FORM

    def metadata(self) -> dict:
        """Fields safe to show every audience (no prompt, no keys)."""
        return {
            'id': self.id,
            'type': self.kind.value,
            'category': self.category,
            'points': self.points,
            'duration': self.duration,
            'index': self.index,
            'total': self.total,
        }

    def to_dict(self) -> dict:
        return {
            **self.metadata(),
            'content': self.content,
            'options': list(self.choices) or None,
            'correct_keys': list(self.accepted_keys),
            'media_url': self.media_url,
        }
