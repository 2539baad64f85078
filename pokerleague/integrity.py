"""Knockout bookkeeping for a running tournament.

Everything here works on :class:`Entrant` snapshots and returns new
snapshots; nothing touches the database.  The routes convert rows with
``DraftEntrant.to_entrant`` and write results back with
``DraftEntrant.apply_entrant``.

``ko_position`` (1 = first out) is the elimination order.  A new knockout
is appended at the end and ``knockedout_at`` breaks ties; moving a knockout
or an explicit auto-fix re-ranks everyone from the timestamps.
"""
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import List, Optional
import re

KO_STEP = timedelta(seconds=1)

# error kinds, used to decide whether an automatic fix applies
TOO_FEW_PLAYERS = 'too_few_players'
WINNER_COUNT = 'winner_count'
MISSING_KO = 'missing_ko'
NON_SEQUENTIAL = 'non_sequential'
DUPLICATE_KO = 'duplicate_ko'
HITMAN_WITHOUT_KO = 'hitman_without_ko'

FIXABLE_KINDS = {NON_SEQUENTIAL, DUPLICATE_KO}


@dataclass(frozen=True)
class Entrant:
    id: int
    name: str
    is_new_player: bool = False
    hitman_name: Optional[str] = None
    ko_position: Optional[int] = None
    placement: Optional[int] = None
    knockedout_at: Optional[datetime] = None

    @property
    def is_knocked_out(self):
        return self.ko_position is not None


@dataclass
class ValidationResult:
    can_integrate: bool
    errors: List[str]
    message: str
    kinds: set = field(default_factory=set)

    def to_dict(self):
        return {
            'canIntegrate': self.can_integrate,
            'errors': list(self.errors),
            'message': self.message,
        }


@dataclass
class MoveResult:
    entrants: List[Entrant]
    ko_position: Optional[int]
    shifted_count: int


class KnockoutMoveError(LookupError):
    """Raised when the entrant to move, or the one to move after, is not on the knockout timeline."""


def _names(entrants):
    return ', '.join(e.name for e in entrants)


def validate_entrants(entrants) -> ValidationResult:
    """Run every integrity check and collect all errors (checks never short-circuit)."""
    entrants = list(entrants)
    errors = []
    kinds = set()

    if len(entrants) < 2:
        errors.append('Tournament must have at least 2 players')
        kinds.add(TOO_FEW_PLAYERS)

    survivors = [e for e in entrants if e.ko_position is None]
    if not survivors:
        errors.append('Tournament must have exactly 1 winner (player with no KO position)')
        kinds.add(WINNER_COUNT)
    elif len(survivors) > 1:
        errors.append(
            f'Only 1 player can be the winner (no KO position). '
            f'Found {len(survivors)}: {_names(survivors)}'
        )
        kinds.add(WINNER_COUNT)

    stranded = [e for e in survivors if e.knockedout_at is not None]
    if stranded:
        errors.append(f'Players missing KO positions: {_names(stranded)}')
        kinds.add(MISSING_KO)

    positions = [e.ko_position for e in entrants if e.ko_position is not None]
    if positions:
        present = set(positions)
        missing = [p for p in range(1, len(positions) + 1) if p not in present]
        if missing:
            errors.append(
                f'Missing KO positions: {", ".join(str(p) for p in missing)}. '
                f'Must be sequential from 1 to {len(positions)}'
            )
            kinds.add(NON_SEQUENTIAL)

    by_position = OrderedDict()
    for e in sorted((e for e in entrants if e.ko_position is not None), key=lambda e: e.ko_position):
        by_position.setdefault(e.ko_position, []).append(e)
    for position, group in by_position.items():
        if len(group) > 1:
            errors.append(f'Duplicate KO position {position}: {_names(group)}')
            kinds.add(DUPLICATE_KO)

    orphaned = [e for e in survivors if e.hitman_name and e.hitman_name.strip()]
    if orphaned:
        errors.append(f'Players with hitman must have KO positions: {_names(orphaned)}')
        kinds.add(HITMAN_WITHOUT_KO)

    if errors:
        return ValidationResult(False, errors, 'Cannot integrate tournament', kinds)
    return ValidationResult(
        True, [], f'Tournament ready for integration with {len(entrants)} players', kinds
    )


def derive_placements(entrants) -> List[Entrant]:
    """Attach a placement to every entrant: survivors are 1st, the last one out is 2nd, and so on.

    Returned in placement order, ties broken by name.
    """
    entrants = list(entrants)
    eliminated = sum(1 for e in entrants if e.ko_position is not None)
    placed = []
    for e in entrants:
        if e.ko_position is None:
            placement = 1
        else:
            placement = eliminated - e.ko_position + 2
        placed.append(replace(e, placement=placement))
    placed.sort(key=lambda e: (e.placement, e.name.lower()))
    return placed


def has_auto_fixable_ko_issues(result: ValidationResult, entrants) -> bool:
    if result.can_integrate:
        return False
    if not result.kinds & FIXABLE_KINDS:
        return False
    return any(e.ko_position is not None for e in entrants)


def _timeline_key(entrant):
    return (entrant.knockedout_at, entrant.id)


def _position_key(entrant):
    return (entrant.ko_position, entrant.knockedout_at or datetime.max, entrant.id)


def _renumber(entrants, ordered):
    renumbered = {e.id: i for i, e in enumerate(ordered, 1)}
    return [
        replace(e, ko_position=renumbered[e.id]) if e.id in renumbered else e
        for e in entrants
    ]


def auto_fix_ko_positions(entrants) -> List[Entrant]:
    """Renumber knocked-out entrants 1..N in elimination order.

    Order follows ``knockedout_at`` when every knocked-out entrant has one,
    otherwise the existing positions with timestamps as a tie-break.
    Entrants are returned in their input order.
    """
    entrants = list(entrants)
    knocked_out = [e for e in entrants if e.ko_position is not None]
    if all(e.knockedout_at is not None for e in knocked_out):
        ordered = sorted(knocked_out, key=_timeline_key)
    else:
        ordered = sorted(knocked_out, key=_position_key)
    return _renumber(entrants, ordered)


def close_ko_gaps(entrants) -> List[Entrant]:
    """Renumber knocked-out entrants 1..N keeping their current position order.

    Used after a knockout is recorded, restored or removed, so positions a
    director corrected by hand are not re-ranked from timestamps.
    """
    entrants = list(entrants)
    ordered = sorted((e for e in entrants if e.ko_position is not None), key=_position_key)
    return _renumber(entrants, ordered)


def move_knockout(entrants, moving_id, after_id=None, step=KO_STEP) -> MoveResult:
    """Move one entrant's elimination to just after another's (or to first when ``after_id`` is None).

    The mover gets the target's timestamp plus ``step``; anyone who would
    now share or precede a later slot is pushed forward one ``step`` at a
    time so timestamps stay strictly increasing.  Every knocked-out
    entrant is then renumbered from the timeline.
    """
    entrants = list(entrants)
    timeline = sorted((e for e in entrants if e.knockedout_at is not None), key=_timeline_key)
    mover = next((e for e in timeline if e.id == moving_id), None)
    if mover is None:
        raise KnockoutMoveError('Player not found or not knocked out')
    others = [e for e in timeline if e.id != moving_id]

    if after_id is None:
        if not others or _timeline_key(mover) < _timeline_key(others[0]):
            return MoveResult(entrants, mover.ko_position, 0)
        insert_at = 0
        new_ts = others[0].knockedout_at - step
    else:
        target = next((e for e in others if e.id == after_id), None)
        if target is None:
            raise KnockoutMoveError('Target player not found or not knocked out')
        insert_at = others.index(target) + 1
        new_ts = target.knockedout_at + step

    order = others[:insert_at] + [replace(mover, knockedout_at=new_ts)] + others[insert_at:]
    shifted = 0
    previous = None
    settled = []
    for position, e in enumerate(order, 1):
        if previous is not None and e.knockedout_at <= previous:
            e = replace(e, knockedout_at=previous + step)
            if e.id != moving_id:
                shifted += 1
        e = replace(e, ko_position=position)
        settled.append(e)
        previous = e.knockedout_at

    by_id = {e.id: e for e in settled}
    moved = by_id[moving_id]
    return MoveResult([by_id.get(e.id, e) for e in entrants], moved.ko_position, shifted)


def _export_order(e):
    if e.ko_position is not None:
        return (0, e.ko_position, '')
    return (1, 0, e.name.lower())


def format_export(tournament, entrants) -> str:
    """Plain-text summary of a tournament: header block and one line per entrant in knockout order.

    ``tournament`` needs ``venue``, ``tournament_date``, ``director_name``
    and ``start_points`` attributes.
    """
    entrants = list(entrants)
    placements = {e.id: e.placement for e in derive_placements(entrants)}
    lines = [
        f'Tournament: {tournament.venue} - {tournament.tournament_date}',
        f'Director: {tournament.director_name}',
        f'Players: {len(entrants)}',
        f'Start Points: {tournament.start_points}',
        '',
    ]
    for e in sorted(entrants, key=_export_order):
        line = f'Player: {e.name}'
        if e.is_new_player:
            line += ' (NEW)'
        if e.hitman_name:
            line += f' | Hitman: {e.hitman_name}'
        if e.ko_position is not None:
            line += f' | KO Position: {e.ko_position} | Final Position: {placements[e.id]}'
        lines.append(line)
    return '\n'.join(lines) + '\n'


def export_filename(tournament) -> str:
    venue = re.sub(r'\s+', '_', tournament.venue.strip())
    return f'tournament_{venue}_{tournament.tournament_date}.txt'
