import logging
from typing import Callable, Dict, List, Optional

from flask import current_app

from arena.storage import CompetitionStore, list_active_competitions

from .broadcaster import Broadcaster
from .clock import Clock
from .state_machine import GameStateMachine

logger = logging.getLogger(__name__)


class CompetitionRegistry:
    """One GameStateMachine per competition id, each with its own clock,
    store and broadcast scope."""

    def __init__(self, app, broadcaster: Broadcaster, store_factory: Callable = CompetitionStore):
        self._app = app
        self._broadcaster = broadcaster
        self._store_factory = store_factory
        self._machines: Dict[int, GameStateMachine] = {}

    def _build(self, competition_id) -> GameStateMachine:
        cfg = self._app.config
        return GameStateMachine(
            competition_id,
            store=self._store_factory(competition_id),
            broadcaster=self._broadcaster.scoped(competition_id),
            clock=Clock(self._app, owner=competition_id),
            default_progression=cfg.get('REVEAL_PROGRESSION_MODE', 'AUTO'),
            strict_transitions=bool(cfg.get('STRICT_TRANSITIONS', False)),
            similarity_threshold=float(cfg.get('SIMILARITY_THRESHOLD', 0.8)),
            grading_message=cfg.get('GRADING_STATUS_MESSAGE', 'Adjudicators are reviewing answers...'),
        )

    def get_or_create(self, competition_id) -> GameStateMachine:
        machine = self._machines.get(competition_id)
        if machine is None:
            machine = self._build(competition_id)
            self._machines[competition_id] = machine
            logger.info(f"[registry] created state machine for competition={competition_id}")
        return machine

    def get(self, competition_id) -> Optional[GameStateMachine]:
        return self._machines.get(competition_id)

    def remove(self, competition_id) -> bool:
        machine = self._machines.pop(competition_id, None)
        if machine is None:
            return False
        machine.shutdown()
        logger.info(f"[registry] removed state machine for competition={competition_id}")
        return True

    def list_active(self) -> List[dict]:
        return [
            {**competition, 'game_state': self.get_or_create(competition['id']).snapshot()}
            for competition in list_active_competitions()
        ]

    def stats(self) -> dict:
        return {
            'total_competitions': len(self._machines),
            'competitions': [
                {'competition_id': cid, 'state': machine.snapshot()}
                for cid, machine in list(self._machines.items())
            ],
        }

    def __contains__(self, competition_id) -> bool:
        return competition_id in self._machines


REGISTRY_KEY = 'competition_registry'


def get_registry() -> CompetitionRegistry:
    return current_app.extensions[REGISTRY_KEY]
