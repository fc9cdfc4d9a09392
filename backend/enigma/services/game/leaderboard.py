from enigma import db
from enigma.models import CompletionRecord, isoformat

# score desc, portals desc, time survived desc; the trailing keys only make
# the order deterministic between otherwise identical results
ORDERING = (
    CompletionRecord.final_score.desc(),
    CompletionRecord.final_portals_cleared.desc(),
    CompletionRecord.final_time_survived.desc(),
    CompletionRecord.completed_at.asc(),
    CompletionRecord.player_id.asc(),
)


def _completed():
    return CompletionRecord.query.filter(CompletionRecord.can_play_again.is_(False))


def _entry(rank, record) -> dict:
    return {
        'rank': rank,
        'player_id': record.player_id,
        'username': record.username,
        'score': record.final_score,
        'portals_cleared': record.final_portals_cleared,
        'time_survived': record.final_time_survived,
        'completed_at': isoformat(record.completed_at),
    }


def top(limit=100) -> list:
    records = _completed().order_by(*ORDERING).limit(limit).all()
    return [_entry(index + 1, record) for index, record in enumerate(records)]


def total_players() -> int:
    return _completed().count()


def rank_for_player(player_id):
    """Self-rank lookup over the full ordering; None if the player has no result."""
    ranked = (
        db.session.query(
            CompletionRecord.id.label('record_id'),
            db.func.row_number().over(order_by=ORDERING).label('rank'),
        )
        .filter(CompletionRecord.can_play_again.is_(False))
        .subquery()
    )
    row = (
        db.session.query(CompletionRecord, ranked.c.rank)
        .join(ranked, ranked.c.record_id == CompletionRecord.id)
        .filter(CompletionRecord.player_id == player_id)
        .first()
    )
    if row is None:
        return None
    record, rank = row
    return _entry(int(rank), record)
