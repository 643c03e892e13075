from arena import db
from datetime import datetime
import json


def _utcnow():
    return datetime.utcnow()


def _load_json_list(raw):
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return value if isinstance(value, list) else []


class Competition(db.Model):
    __tablename__ = 'competition'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    status = db.Column(db.String(32), default='ACTIVE', nullable=False)  # ACTIVE, ENDED
    contestant_count = db.Column(db.Integer, default=0)
    jury_count = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    contestants = db.relationship('Contestant', back_populates='competition', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'status': self.status,
            'contestant_count': self.contestant_count,
            'jury_count': self.jury_count,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    # Null competition_id: question shared by every competition
    competition_id = db.Column(db.Integer, db.ForeignKey('competition.id'), nullable=True, index=True)
    content = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(32), default='CLOSED_FORM', nullable=False)  # CLOSED_FORM, OPEN_FORM
    options = db.Column(db.Text, nullable=True)  # JSON-encoded list of choices
    correct_keys = db.Column(db.Text, nullable=True)  # JSON-encoded list of accepted keys
    points = db.Column(db.Integer, default=10, nullable=False)
    duration = db.Column(db.Integer, default=30, nullable=False)
    category = db.Column(db.String(128), nullable=True)
    media_url = db.Column(db.String(512), nullable=True)
    order_index = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'competition_id': self.competition_id,
            'content': self.content,
            'type': self.type,
            'options': _load_json_list(self.options),
            'correct_keys': _load_json_list(self.correct_keys),
            'points': self.points,
            'duration': self.duration,
            'category': self.category,
            'media_url': self.media_url,
            'order_index': self.order_index,
            'is_active': self.is_active,
        }


class Contestant(db.Model):
    __tablename__ = 'contestant'
    id = db.Column(db.Integer, primary_key=True)
    competition_id = db.Column(db.Integer, db.ForeignKey('competition.id'), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    table_no = db.Column(db.Integer, nullable=True)
    total_score = db.Column(db.Integer, default=0, nullable=False)
    status = db.Column(db.String(32), default='ONLINE', nullable=False)  # ONLINE, OFFLINE, DISQUALIFIED
    socket_id = db.Column(db.String(128), nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    competition = db.relationship('Competition', back_populates='contestants')

    def to_dict(self):
        return {
            'id': self.id,
            'competition_id': self.competition_id,
            'name': self.name,
            'table_no': self.table_no,
            'total_score': self.total_score,
            'status': self.status,
        }

    def to_leaderboard_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'table_no': self.table_no,
            'total_score': self.total_score,
        }


class Answer(db.Model):
    __tablename__ = 'answer'
    __table_args__ = (
        db.UniqueConstraint('question_id', 'contestant_id', name='uq_answer_question_contestant'),
    )
    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False, index=True)
    contestant_id = db.Column(db.Integer, db.ForeignKey('contestant.id'), nullable=False, index=True)
    answer_text = db.Column(db.Text, default='', nullable=False)
    time_remaining = db.Column(db.Integer, default=0, nullable=False)
    # Both stay null until the answer is graded
    is_correct = db.Column(db.Boolean, nullable=True)
    points_awarded = db.Column(db.Integer, nullable=True)
    submit_time = db.Column(db.DateTime, default=_utcnow, nullable=False)
    contestant = db.relationship('Contestant')

    def to_dict(self):
        return {
            'id': self.id,
            'question_id': self.question_id,
            'contestant_id': self.contestant_id,
            'name': self.contestant.name if self.contestant else None,
            'table_no': self.contestant.table_no if self.contestant else None,
            'answer_text': self.answer_text,
            'time_remaining': self.time_remaining,
            'is_correct': self.is_correct,
            'points_awarded': self.points_awarded,
        }


class Quote(db.Model):
    __tablename__ = 'quote'
    id = db.Column(db.Integer, primary_key=True)
    text = db.Column(db.Text, nullable=False)
    author = db.Column(db.String(128), nullable=True)

    def to_dict(self):
        return {'id': self.id, 'text': self.text, 'author': self.author}


class Setting(db.Model):
    __tablename__ = 'setting'
    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.String(256), nullable=False)
    description = db.Column(db.String(256), nullable=True)


class CompetitionSession(db.Model):
    """Last persisted lifecycle snapshot of a competition."""
    __tablename__ = 'competition_session'
    id = db.Column(db.Integer, primary_key=True)
    competition_id = db.Column(db.Integer, db.ForeignKey('competition.id'), unique=True, nullable=False)
    state = db.Column(db.String(32), default='IDLE', nullable=False)
    current_question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    def to_dict(self):
        return {
            'competition_id': self.competition_id,
            'state': self.state,
            'current_question_id': self.current_question_id,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
