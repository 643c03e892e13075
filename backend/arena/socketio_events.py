from flask_socketio import join_room, leave_room, emit
from flask import current_app, request
from typing import Dict, Any
import logging
import time

from arena.errors import GameError, InvalidInput, InvalidState, NotFound, Result
from arena.services.game.broadcaster import NAMESPACE, room_for
from arena.services.game.registry import get_registry
from arena.services.game.types import Audience
from arena.storage import get_competition

logger = logging.getLogger(__name__)

# Socket id -> {'role', 'competition_id', 'contestant_id'}
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _ctx_for(*roles: Audience):
    """Return the caller's socket context if it joined with one of ``roles``."""
    ctx = _sid_to_ctx.get(_get_sid())
    if not ctx or ctx['role'] not in roles:
        emit('error', {'message': 'not allowed for this role'})
        return None
    return ctx


def _machine(ctx):
    return get_registry().get_or_create(ctx['competition_id'])


def _reply(event: str, action: str, run) -> None:
    """Run a command and answer only the calling socket.

    Persistence failures are reported to the caller as a failed result;
    nothing is broadcast for them.
    """
    try:
        result = run()
    except GameError as exc:
        logger.error(f"[command-failed] action={action} error={exc.code}", exc_info=True)
        result = Result.failure(exc)
    emit(event, {'action': action, **result.to_dict()})


def _send(event: str, fetch) -> None:
    """Answer a read request from the calling socket."""
    try:
        payload = fetch()
    except GameError as exc:
        logger.error(f"[read-failed] event={event} error={exc.code}", exc_info=True)
        emit('error', exc.to_dict())
        return
    emit(event, payload)


def handle_connect():
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_disconnect():
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx:
        return
    logger.info(f"[disconnect] role={ctx['role'].value} competition={ctx['competition_id']}")
    contestant_id = ctx.get('contestant_id')
    if ctx['role'] is Audience.CONTESTANT and contestant_id is not None:
        try:
            _machine(ctx).contestant_disconnected(contestant_id)
        except GameError as exc:
            logger.error(f"[disconnect-failed] contestant={contestant_id} error={exc.code}", exc_info=True)


def handle_join_role(data=None):
    data = data or {}
    try:
        role = Audience(data.get('role'))
    except ValueError:
        emit('error', {'message': 'role must be one of moderator, contestant, adjudicator, spectator'})
        return
    try:
        competition_id = int(data.get('competition_id') or current_app.config.get('DEFAULT_COMPETITION_ID', 1))
    except (TypeError, ValueError):
        emit('error', {'message': 'competition_id must be an integer'})
        return
    try:
        competition = get_competition(competition_id)
    except GameError as exc:
        logger.error(f"[join-failed] competition={competition_id} error={exc.code}", exc_info=True)
        emit('error', exc.to_dict())
        return
    if not competition or competition['status'] != 'ACTIVE':
        emit('error', NotFound(f"no active competition {competition_id}").to_dict())
        return

    previous = _sid_to_ctx.get(_get_sid())
    if previous:
        leave_room(room_for(previous['role'], previous['competition_id']))
    room = room_for(role, competition_id)
    join_room(room)
    _sid_to_ctx[_get_sid()] = {'role': role, 'competition_id': competition_id, 'contestant_id': None}
    emit('joined', {'room': room, 'role': role.value, 'competition_id': competition_id})

    machine = get_registry().get_or_create(competition_id)
    init = {'game_state': machine.snapshot()}
    try:
        if role is Audience.MODERATOR:
            init.update(
                questions=machine.store.list_active_questions(),
                contestants=machine.store.list_contestants(),
                leaderboard=machine.store.get_leaderboard(),
            )
        elif role is Audience.SPECTATOR:
            init.update(
                contestants=machine.store.list_contestants(),
                leaderboard=machine.store.get_leaderboard(),
                quote=machine.store.get_random_quote(),
            )
    except GameError as exc:
        logger.error(f"[init-failed] role={role.value} competition={competition_id} error={exc.code}", exc_info=True)
        emit('error', exc.to_dict())
        return
    emit('init_data', init)


def handle_leave_role(data=None):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx:
        emit('error', {'message': 'not joined'})
        return
    room = room_for(ctx['role'], ctx['competition_id'])
    leave_room(room)
    emit('left', {'room': room})


# ---- moderator ----

def handle_admin_start_question(data=None):
    ctx = _ctx_for(Audience.MODERATOR)
    if ctx:
        question_id = (data or {}).get('question_id')
        _reply('action_result', 'start_question', lambda: _machine(ctx).start_question(question_id))


def handle_admin_skip_to_lock(data=None):
    ctx = _ctx_for(Audience.MODERATOR)
    if ctx:
        _reply('action_result', 'skip_to_lock', lambda: _machine(ctx).lock())


def handle_admin_commit_grading(data=None):
    ctx = _ctx_for(Audience.MODERATOR)
    if ctx:
        _reply('action_result', 'commit_grading', lambda: _machine(ctx).commit_grading())


def handle_admin_next_step(data=None):
    ctx = _ctx_for(Audience.MODERATOR)
    if ctx:
        _reply('action_result', 'next_step', lambda: _machine(ctx).advance_reveal_step())


def handle_admin_go_idle(data=None):
    ctx = _ctx_for(Audience.MODERATOR)
    if ctx:
        _reply('action_result', 'go_idle', lambda: _machine(ctx).go_idle())


def handle_admin_reset_game(data=None):
    ctx = _ctx_for(Audience.MODERATOR)
    if ctx:
        _reply('action_result', 'reset_game', lambda: _machine(ctx).reset_competition())


def handle_admin_add_question(data=None):
    ctx = _ctx_for(Audience.MODERATOR)
    if ctx:
        _reply('action_result', 'add_question', lambda: _machine(ctx).add_question(data or {}))


def handle_admin_update_question(data=None):
    ctx = _ctx_for(Audience.MODERATOR)
    if ctx:
        fields = dict(data or {})
        question_id = fields.pop('question_id', None)
        _reply('action_result', 'update_question', lambda: _machine(ctx).update_question(question_id, fields))


def handle_admin_delete_question(data=None):
    ctx = _ctx_for(Audience.MODERATOR)
    if ctx:
        question_id = (data or {}).get('question_id')
        _reply('action_result', 'delete_question', lambda: _machine(ctx).remove_question(question_id))


def handle_admin_refresh_contestants(data=None):
    ctx = _ctx_for(Audience.MODERATOR)
    if ctx:
        _send('contestants_updated', lambda: _machine(ctx).store.list_contestants())


# ---- contestant ----

def handle_player_login(data=None):
    ctx = _ctx_for(Audience.CONTESTANT)
    if not ctx:
        return
    data = data or {}
    name = (data.get('name') or '').strip()
    try:
        table_no = int(data.get('table_no'))
    except (TypeError, ValueError):
        table_no = None
    if not name or table_no is None:
        failure = Result.failure(InvalidInput('name and table_no are required'))
        emit('login_result', {'action': 'login', **failure.to_dict()})
        return

    def _login():
        result = _machine(ctx).register_contestant(name, table_no, socket_id=_get_sid())
        if result.ok:
            ctx['contestant_id'] = result.data['contestant']['id']
            logger.info(f"[login] competition={ctx['competition_id']} contestant={ctx['contestant_id']} table={table_no}")
        return result

    _reply('login_result', 'login', _login)
    emit('game_state', _machine(ctx).snapshot())


def handle_player_submit_answer(data=None):
    ctx = _ctx_for(Audience.CONTESTANT)
    if not ctx:
        return
    contestant_id = ctx.get('contestant_id')
    if contestant_id is None:
        emit('answer_result', {'action': 'submit_answer', **Result.failure(InvalidState('login required')).to_dict()})
        return
    data = data or {}
    _reply('answer_result', 'submit_answer',
           lambda: _machine(ctx).submit_answer(contestant_id, data.get('answer') or '', data.get('time_remaining')))


def handle_player_heartbeat(data=None):
    emit('heartbeat_ack', {'timestamp': int(time.time() * 1000)})


# ---- adjudicator ----

def handle_jury_approve_group(data=None):
    ctx = _ctx_for(Audience.ADJUDICATOR)
    if not ctx:
        return
    data = data or {}
    answer_ids = data.get('answer_ids')
    if not isinstance(answer_ids, list):
        failure = Result.failure(InvalidInput('answer_ids must be a list'))
        emit('jury_action_result', {'action': 'approve_group', **failure.to_dict()})
        return
    _reply('jury_action_result', 'approve_group',
           lambda: _machine(ctx).grade_answers(answer_ids, bool(data.get('is_correct')), data.get('points')))


def handle_jury_manual_score(data=None):
    ctx = _ctx_for(Audience.ADJUDICATOR)
    if not ctx:
        return
    data = data or {}
    _reply('jury_action_result', 'manual_score',
           lambda: _machine(ctx).grade_answers([data.get('answer_id')], bool(data.get('is_correct')), data.get('points')))


def handle_jury_commit_results(data=None):
    ctx = _ctx_for(Audience.ADJUDICATOR, Audience.MODERATOR)
    if ctx:
        grades = (data or {}).get('grades')
        _reply('jury_action_result', 'commit_results', lambda: _machine(ctx).commit_grading(grades))


def handle_jury_request_answers(data=None):
    ctx = _ctx_for(Audience.ADJUDICATOR)
    if ctx:
        question_id = (data or {}).get('question_id')
        _send('jury_answers_data',
              lambda: {'question_id': question_id, 'answers': _machine(ctx).store.list_answers(question_id)})


# ---- spectator ----

def handle_screen_request_quote(data=None):
    ctx = _ctx_for(Audience.SPECTATOR)
    if ctx:
        _send('new_quote', lambda: _machine(ctx).store.get_random_quote())


_HANDLERS = {
    'connect': handle_connect,
    'disconnect': handle_disconnect,
    'join_role': handle_join_role,
    'leave_role': handle_leave_role,
    'admin_start_question': handle_admin_start_question,
    'admin_skip_to_lock': handle_admin_skip_to_lock,
    'admin_commit_grading': handle_admin_commit_grading,
    'admin_next_step': handle_admin_next_step,
    'admin_go_idle': handle_admin_go_idle,
    'admin_reset_game': handle_admin_reset_game,
    'admin_add_question': handle_admin_add_question,
    'admin_update_question': handle_admin_update_question,
    'admin_delete_question': handle_admin_delete_question,
    'admin_refresh_contestants': handle_admin_refresh_contestants,
    'player_login': handle_player_login,
    'player_submit_answer': handle_player_submit_answer,
    'player_heartbeat': handle_player_heartbeat,
    'jury_approve_group': handle_jury_approve_group,
    'jury_manual_score': handle_jury_manual_score,
    'jury_commit_results': handle_jury_commit_results,
    'jury_request_answers': handle_jury_request_answers,
    'screen_request_quote': handle_screen_request_quote,
}


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    from arena import socketio

    for event, handler in _HANDLERS.items():
        socketio.on_event(event, handler, namespace=NAMESPACE)
    if testing:
        # Test-only mirror on default namespace
        for event, handler in _HANDLERS.items():
            socketio.on_event(event, handler, namespace='/')
