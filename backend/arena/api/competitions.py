from flask import Blueprint, jsonify, request
from arena.errors import GameError, NotFound
from arena.services.game.registry import get_registry
from arena.storage import CompetitionStore, create_competition, end_competition, get_competition
import logging

logger = logging.getLogger(__name__)

competitions = Blueprint('competitions', __name__)


@competitions.errorhandler(NotFound)
def _not_found(exc):
    return jsonify(exc.to_dict()), 404


@competitions.errorhandler(GameError)
def _game_error(exc):
    logger.error(f"[api-error] error={exc.code} message={exc.message}")
    return jsonify(exc.to_dict()), 500


@competitions.route('/active', methods=['GET'])
def list_active():
    return jsonify(get_registry().list_active())


@competitions.route('/stats', methods=['GET'])
def stats():
    return jsonify(get_registry().stats())


@competitions.route('', methods=['POST'])
def create():
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        return jsonify({'error': 'Competition name is required'}), 400
    try:
        contestant_count = int(data.get('contestant_count') or 0)
        jury_count = int(data.get('jury_count') or 0)
    except (TypeError, ValueError):
        return jsonify({'error': 'contestant_count and jury_count must be integers'}), 400
    competition = create_competition(name, contestant_count, jury_count)
    logger.info(f"[competition-create] id={competition['id']} name={name}")
    return jsonify(competition), 201


@competitions.route('/<int:competition_id>/end', methods=['POST'])
def end(competition_id):
    competition = end_competition(competition_id)
    get_registry().remove(competition_id)
    logger.info(f"[competition-end] id={competition_id}")
    return jsonify(competition)


def _existing(competition_id) -> int:
    if not get_competition(competition_id):
        raise NotFound(f"competition {competition_id} not found")
    return competition_id


@competitions.route('/<int:competition_id>/state', methods=['GET'])
def state(competition_id):
    return jsonify(get_registry().get_or_create(_existing(competition_id)).snapshot())


@competitions.route('/<int:competition_id>/leaderboard', methods=['GET'])
def leaderboard(competition_id):
    return jsonify(CompetitionStore(_existing(competition_id)).get_leaderboard())


@competitions.route('/<int:competition_id>/questions', methods=['GET'])
def questions(competition_id):
    return jsonify(CompetitionStore(_existing(competition_id)).list_active_questions())
