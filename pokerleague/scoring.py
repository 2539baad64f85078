"""League points and the integrate/revert lifecycle of a tournament draft."""
import math
import re
import uuid
from collections import Counter

from .integrity import validate_entrants, derive_placements
from .models import (
    Player,
    User,
    GameResult,
    DRAFT_IN_PROGRESS,
    DRAFT_INTEGRATED,
)


class IntegrationError(ValueError):
    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = errors or []


def placement_points(placement):
    if placement == 1:
        return 10
    if placement == 2:
        return 7
    if 3 <= placement <= 8:
        return 9 - placement
    return 0


def player_score(player_count, placement):
    """ln((n + 1) / placement): beating a big field is worth more than winning a small one."""
    if not placement or placement < 1:
        return 0.0
    return math.log((player_count + 1) / placement)


def game_file_name(game_date, venue):
    venue = re.sub(r'\s+', '_', (venue or '').strip())
    return f'{game_date.strftime("%m%d")}_{venue}'


def season_label(game_date):
    quarter = (game_date.month - 1) // 3 + 1
    return f'Q{quarter} {game_date.year}'


def _name_keys(*values):
    return {v.strip().lower() for v in values if v and v.strip()}


def knockout_counts(rows):
    """Map entrant id -> number of entrants whose hitman names them (by name or nickname)."""
    hits = Counter(r.hitman_name.strip().lower() for r in rows if r.hitman_name and r.hitman_name.strip())
    counts = {}
    for row in rows:
        counts[row.id] = sum(hits[key] for key in _name_keys(row.player_name, row.player_nickname))
    return counts


def integrate_draft(draft, session):
    if draft.status != DRAFT_IN_PROGRESS:
        raise IntegrationError('Tournament draft not found or not in progress')
    rows = sorted(draft.entrants, key=lambda r: r.player_name.lower())
    if not rows:
        raise IntegrationError('No players found for this tournament')

    snapshot = [row.to_entrant() for row in rows]
    result = validate_entrants(snapshot)
    if not result.can_integrate:
        raise IntegrationError('Tournament validation failed', errors=result.errors)

    by_id = {row.id: row for row in rows}
    knockouts = knockout_counts(rows)
    file_name = game_file_name(draft.tournament_date, draft.venue)
    game_uid = str(uuid.uuid4())
    season = season_label(draft.tournament_date)
    created = 0

    for entrant in derive_placements(snapshot):
        row = by_id[entrant.id]
        row.placement = entrant.placement
        if not row.player_uid:
            player = Player(
                uid=str(uuid.uuid4()),
                name=row.player_name,
                nickname=row.player_nickname or row.player_name,
            )
            session.add(player)
            row.player_uid = player.uid
            row.is_new_player = True
            created += 1
        points = placement_points(entrant.placement)
        session.add(GameResult(
            game_uid=game_uid,
            file_name=file_name,
            player_uid=row.player_uid,
            name=row.player_name,
            hitman=row.hitman_name or None,
            placement=entrant.placement,
            knockouts=knockouts[row.id],
            start_points=draft.start_points or 0,
            placement_points=points,
            total_points=(draft.start_points or 0) + points,
            season=season,
            venue=draft.venue,
            game_date=draft.tournament_date,
            player_score=player_score(len(rows), entrant.placement),
        ))

    draft.status = DRAFT_INTEGRATED
    draft.game_uid = game_uid
    draft.file_name = file_name
    session.commit()
    return {
        'success': True,
        'gameUid': game_uid,
        'fileName': file_name,
        'playersProcessed': len(rows),
        'newPlayersCreated': created,
    }


def revert_draft(draft, session):
    if draft.status != DRAFT_INTEGRATED:
        raise IntegrationError('Tournament draft not found or not integrated')
    if not draft.game_uid:
        raise IntegrationError('No game_uid found for this tournament')

    game_uid = draft.game_uid
    results = session.query(GameResult).filter_by(game_uid=game_uid).all()
    orphaned = set()
    for result in results:
        if not result.player_uid:
            continue
        elsewhere = (
            session.query(GameResult)
            .filter(GameResult.player_uid == result.player_uid, GameResult.game_uid != game_uid)
            .count()
        )
        claimed = session.query(User).filter_by(player_uid=result.player_uid).count()
        if not elsewhere and not claimed:
            orphaned.add(result.player_uid)

    for result in results:
        session.delete(result)
    removed_players = 0
    for uid in orphaned:
        player = session.query(Player).filter_by(uid=uid).first()
        if player:
            session.delete(player)
            removed_players += 1

    for row in draft.entrants:
        row.placement = None
        if row.player_uid in orphaned:
            row.player_uid = None
            row.is_new_player = True

    draft.status = DRAFT_IN_PROGRESS
    draft.game_uid = None
    draft.file_name = None
    session.commit()
    return {
        'success': True,
        'entriesRemoved': len(results),
        'playersRemoved': removed_players,
    }
