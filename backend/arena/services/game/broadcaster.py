"""Outbound event routing to the four audiences of a competition.

``ROUTES`` maps each domain event to the audiences that receive it, the
wire event name they see and the payload projection they get. Adding an
audience or changing what one sees is an edit to that table only.
"""

from collections import namedtuple
from typing import Callable, Dict, Optional, Tuple

from .types import Audience

NAMESPACE = '/ws'

Route = namedtuple('Route', ['audience', 'wire_event', 'transform'])


def _identity(payload):
    return payload


def _contestant_question(payload: dict) -> dict:
    question = payload['question']
    return {
        'id': question['id'],
        'content': question['content'],
        'type': question['type'],
        'options': question['options'],
        'points': question['points'],
        'duration': question['duration'],
        'media_url': question['media_url'],
        'index': question['index'],
        'total': question['total'],
    }


def _adjudicator_question(payload: dict) -> dict:
    return {**_contestant_question(payload), 'correct_keys': payload['question']['correct_keys']}


def _masked_question(payload: dict) -> dict:
    question = payload['question']
    return {
        'category': question['category'] or 'General Knowledge',
        'points': question['points'],
        'duration': question['duration'],
        'quote': payload.get('quote'),
        'media_url': question['media_url'],
        'index': question['index'],
        'total': question['total'],
    }


def _spectator_step(payload: dict) -> dict:
    return {'step': payload['step']}


def _to_all(wire_event: str) -> Tuple[Route, ...]:
    return tuple(Route(audience, wire_event, _identity) for audience in Audience)


ROUTES: Dict[str, Tuple[Route, ...]] = {
    'state_changed': _to_all('game_state'),
    'question_started': (
        Route(Audience.CONTESTANT, 'new_question', _contestant_question),
        Route(Audience.ADJUDICATOR, 'new_question', _adjudicator_question),
        Route(Audience.SPECTATOR, 'masked_question', _masked_question),
    ),
    'countdown_tick': _to_all('time_sync'),
    'submission_status': _to_all('player_status_update'),
    'review_data': (Route(Audience.ADJUDICATOR, 'jury_review_data', _identity),),
    'grading_status': (Route(Audience.SPECTATOR, 'grading_status', _identity),),
    'results': _to_all('show_results'),
    'reveal_step': (
        Route(Audience.SPECTATOR, 'reveal_step_update', _spectator_step),
        Route(Audience.MODERATOR, 'reveal_step_update', _identity),
    ),
    'reveal_progress': (Route(Audience.MODERATOR, 'reveal_step_update', _identity),),
    'competition_reset': _to_all('game_reset'),
    'contestants_updated': _to_all('contestants_updated'),
    'questions_updated': (Route(Audience.MODERATOR, 'questions_updated', _identity),),
    'leaderboard_updated': _to_all('leaderboard_updated'),
}


def room_for(audience, competition_id) -> str:
    return f"{Audience(audience).value}:{competition_id}"


class Broadcaster:
    """Dispatches domain events to Socket.IO rooms.

    ``emit`` defaults to ``socketio.emit``; tests pass a recorder.
    """

    def __init__(self, emit: Optional[Callable] = None, namespace: str = NAMESPACE):
        if emit is None:
            from arena import socketio
            emit = socketio.emit
        self._emit = emit
        self.namespace = namespace

    def publish(self, competition_id, event: str, payload) -> None:
        try:
            routes = ROUTES[event]
        except KeyError:
            raise ValueError(f"unknown event {event!r}") from None
        for route in routes:
            self._emit(
                route.wire_event,
                route.transform(payload),
                to=room_for(route.audience, competition_id),
                namespace=self.namespace,
            )

    def scoped(self, competition_id) -> 'CompetitionBroadcaster':
        return CompetitionBroadcaster(self, competition_id)


class CompetitionBroadcaster:
    """A Broadcaster bound to one competition's rooms."""

    def __init__(self, broadcaster: Broadcaster, competition_id):
        self._broadcaster = broadcaster
        self.competition_id = competition_id

    def publish(self, event: str, payload=None) -> None:
        self._broadcaster.publish(self.competition_id, event, payload if payload is not None else {})
