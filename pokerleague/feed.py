"""Live feed assembly, card-suit reactions and the TV-screen payload."""
from datetime import datetime

from sqlalchemy import func

from .models import (
    FeedItem,
    FeedReaction,
    User,
    ENTRANT_KNOCKED_OUT,
)

REACTION_TYPES = ('heart', 'diamond', 'club', 'spade')
MAX_PER_SUIT = 13
MAX_MESSAGE_LENGTH = 500
MAX_FEED_LIMIT = 100
DEFAULT_FEED_LIMIT = 20

ITEM_MESSAGE = 'message'
ITEM_TD_MESSAGE = 'td_message'
ITEM_CHECKIN = 'checkin'
ITEM_SYSTEM = 'system'
ITEM_PHOTO = 'photo'
ITEM_KNOCKOUT = 'knockout'

# always shown in full; everything else is paginated
UNPAGED_TYPES = (ITEM_MESSAGE, ITEM_TD_MESSAGE)
DELETABLE_TYPES = (ITEM_MESSAGE, ITEM_TD_MESSAGE)


class ReactionLimitError(ValueError):
    def __init__(self, message, balance):
        super().__init__(message)
        self.balance = balance


def empty_suits():
    return {suit: 0 for suit in REACTION_TYPES}


def serialize_item(item):
    return {
        'id': item.id,
        'item_type': item.item_type,
        'author_uid': item.author_uid,
        'author_name': item.author_name,
        'message_text': item.message_text,
        'photo_path': item.photo_path,
        'created_at': item.created_at.isoformat() if item.created_at else None,
    }


def knockout_items(draft):
    """Feed entries computed from the knockout timeline; ids are ``ko-<entrant id>``."""
    knocked = [
        e for e in draft.entrants
        if e.status == ENTRANT_KNOCKED_OUT and e.knockedout_at is not None
    ]
    knocked.sort(key=lambda e: (e.knockedout_at, e.id))
    items = []
    for position, e in enumerate(knocked, 1):
        items.append({
            'id': f'ko-{e.id}',
            'item_type': ITEM_KNOCKOUT,
            'author_uid': None,
            'author_name': None,
            'message_text': None,
            'photo_path': None,
            'created_at': e.knockedout_at.isoformat(),
            'eliminated_player_name': e.display_name(),
            'hitman_name': e.hitman_name,
            'ko_position': e.ko_position or position,
        })
    return items


def reaction_totals(session, tournament_id, item_ids):
    totals = {str(i): empty_suits() for i in item_ids}
    if not totals:
        return totals
    rows = (
        session.query(FeedReaction.feed_item_id, FeedReaction.reaction_type, func.sum(FeedReaction.count))
        .filter(FeedReaction.tournament_draft_id == tournament_id,
                FeedReaction.feed_item_id.in_(list(totals)))
        .group_by(FeedReaction.feed_item_id, FeedReaction.reaction_type)
        .all()
    )
    for item_id, suit, total in rows:
        totals[item_id][suit] = int(total or 0)
    return totals


def user_reactions(session, tournament_id, user_id, item_ids):
    mine = {str(i): empty_suits() for i in item_ids}
    if not mine or user_id is None:
        return mine
    rows = (
        session.query(FeedReaction)
        .filter(FeedReaction.tournament_draft_id == tournament_id,
                FeedReaction.user_id == user_id,
                FeedReaction.feed_item_id.in_(list(mine)))
        .all()
    )
    for row in rows:
        mine[row.feed_item_id][row.reaction_type] = row.count
    return mine


def reaction_balance(session, tournament_id, user_id):
    """Suits the user has left to spend in this tournament."""
    used = dict(
        session.query(FeedReaction.reaction_type, func.sum(FeedReaction.count))
        .filter_by(tournament_draft_id=tournament_id, user_id=user_id)
        .group_by(FeedReaction.reaction_type)
        .all()
    )
    return {suit: max(0, MAX_PER_SUIT - int(used.get(suit) or 0)) for suit in REACTION_TYPES}


def add_reaction(session, tournament_id, item_id, user_id, reaction_type, amount=1):
    """Spend ``amount`` of a suit on an item, clamped to what is left.

    Raises ReactionLimitError when the suit is already exhausted.
    """
    if reaction_type not in REACTION_TYPES:
        raise ValueError('Invalid reaction type')
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        raise ValueError('Invalid reaction count')
    if amount < 1:
        raise ValueError('Invalid reaction count')

    balance = reaction_balance(session, tournament_id, user_id)
    available = balance[reaction_type]
    if available <= 0:
        raise ReactionLimitError(f'No {reaction_type} reactions left', balance)
    added = min(amount, available)

    item_id = str(item_id)
    row = (
        session.query(FeedReaction)
        .filter_by(feed_item_id=item_id, tournament_draft_id=tournament_id,
                   user_id=user_id, reaction_type=reaction_type)
        .first()
    )
    if row is None:
        row = FeedReaction(
            feed_item_id=item_id,
            tournament_draft_id=tournament_id,
            user_id=user_id,
            reaction_type=reaction_type,
            count=0,
        )
        session.add(row)
    row.count += added
    session.commit()

    balance[reaction_type] = available - added
    return {
        'added': added,
        'reactions': reaction_totals(session, tournament_id, [item_id])[item_id],
        'userReactions': user_reactions(session, tournament_id, user_id, [item_id])[item_id],
        'balance': balance,
    }


def reaction_details(session, tournament_id, item_id):
    rows = (
        session.query(FeedReaction, User)
        .join(User, User.id == FeedReaction.user_id)
        .filter(FeedReaction.tournament_draft_id == tournament_id,
                FeedReaction.feed_item_id == str(item_id),
                FeedReaction.count > 0)
        .order_by(FeedReaction.updated_at.desc())
        .all()
    )
    return [
        {
            'user_id': user.id,
            'user_name': user.display_name(),
            'reaction_type': reaction.reaction_type,
            'count': reaction.count,
        }
        for reaction, user in rows
    ]


def _parse_cursor(before):
    if not before:
        return None
    try:
        return datetime.fromisoformat(before)
    except ValueError:
        raise ValueError('Invalid cursor')


def build_feed(session, draft, limit=DEFAULT_FEED_LIMIT, before=None, user_id=None):
    """Feed page, newest first.

    Chat and director messages plus computed knockouts are always included;
    check-ins, photos and system items are paginated with ``before``.
    """
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = DEFAULT_FEED_LIMIT
    limit = max(1, min(limit, MAX_FEED_LIMIT))
    cursor = _parse_cursor(before)

    base = session.query(FeedItem).filter(FeedItem.tournament_draft_id == draft.id)
    messages = base.filter(FeedItem.item_type.in_(UNPAGED_TYPES)).all()
    paged_query = base.filter(~FeedItem.item_type.in_(UNPAGED_TYPES))
    if cursor:
        paged_query = paged_query.filter(FeedItem.created_at < cursor)
    paged = paged_query.order_by(FeedItem.created_at.desc(), FeedItem.id.desc()).limit(limit + 1).all()
    has_more = len(paged) > limit
    paged = paged[:limit]

    items = [serialize_item(i) for i in messages + paged] + knockout_items(draft)
    items.sort(key=lambda i: i['created_at'] or '', reverse=True)

    ids = [i['id'] for i in items]
    totals = reaction_totals(session, draft.id, ids)
    mine = user_reactions(session, draft.id, user_id, ids)
    for item in items:
        item['reactions'] = totals[str(item['id'])]
        item['userReactions'] = mine[str(item['id'])]

    return {
        'items': items,
        'hasMore': has_more,
        'nextCursor': paged[-1].created_at.isoformat() if has_more and paged else None,
    }


def build_gameview(draft, session):
    """Everything the venue TV screen shows for one tournament."""
    remaining = [e for e in draft.entrants if e.status != ENTRANT_KNOCKED_OUT]
    knockouts = knockout_items(draft)
    latest_td = (
        session.query(FeedItem)
        .filter_by(tournament_draft_id=draft.id, item_type=ITEM_TD_MESSAGE)
        .order_by(FeedItem.created_at.desc(), FeedItem.id.desc())
        .first()
    )
    return {
        'tournament': {
            'id': draft.id,
            'venue': draft.venue,
            'tournament_date': draft.tournament_date.isoformat(),
            'tournament_time': draft.tournament_time,
            'director_name': draft.director_name,
            'status': draft.status,
        },
        'totalPlayers': len(draft.entrants),
        'playersRemaining': len(remaining),
        'remaining': sorted((e.display_name() for e in remaining), key=str.lower),
        'knockouts': [
            {
                'ko_position': k['ko_position'],
                'name': k['eliminated_player_name'],
                'hitman_name': k['hitman_name'],
                'knockedout_at': k['created_at'],
            }
            for k in reversed(knockouts)
        ],
        'latestTdMessage': serialize_item(latest_td) if latest_td else None,
    }
