from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from enigma import db, rules
from enigma.errors import StoreUnavailable


@dataclass(frozen=True)
class GameSettings:
    time_limit: int = rules.SESSION_TIME_LIMIT_SEC
    time_tolerance: int = rules.TIME_TOLERANCE_SEC
    score_ceiling: int = rules.SCORE_INCREASE_CEILING
    base_speed: int = rules.BASE_SPEED
    cap_speed: int = rules.CAP_SPEED
    leaderboard_limit: int = 100

    @classmethod
    def current(cls) -> 'GameSettings':
        cfg = current_app.config
        return cls(
            time_limit=int(cfg.get('SESSION_TIME_LIMIT_SEC', rules.SESSION_TIME_LIMIT_SEC)),
            time_tolerance=int(cfg.get('TIME_TOLERANCE_SEC', rules.TIME_TOLERANCE_SEC)),
            score_ceiling=int(cfg.get('SCORE_INCREASE_CEILING', rules.SCORE_INCREASE_CEILING)),
            base_speed=int(cfg.get('BASE_SPEED', rules.BASE_SPEED)),
            cap_speed=int(cfg.get('CAP_SPEED', rules.CAP_SPEED)),
            leaderboard_limit=int(cfg.get('LEADERBOARD_LIMIT', 100)),
        )


def commit(context: str) -> None:
    """Commit the unit of work or roll it back entirely."""
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[store-error] {context}: {exc}")
        raise StoreUnavailable() from exc
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[store-error] {context}")
        raise


def report_suspicious(kind: str, player_id: str, session_id: str, **details) -> None:
    """Non-fatal anti-cheat signal for offline review."""
    extra = ' '.join(f"{k}={v}" for k, v in details.items())
    current_app.logger.warning(
        f"[suspicious] kind={kind} player={player_id} session={session_id} {extra}".rstrip()
    )
