"""League standings and player statistics built from integrated game results."""
from collections import OrderedDict, Counter
from datetime import date, timedelta

from .models import GameResult, Player

BONUS_VENUE = 'bonus'
FINAL_TABLE_SIZE = 8
MONTHLY_VENUE_SPOTS = 7
MONTHLY_QUALIFY_RANK = 5


def quarter_date_range(quarter, year):
    if quarter not in (1, 2, 3, 4):
        raise ValueError('quarter must be 1-4')
    start = date(year, 3 * (quarter - 1) + 1, 1)
    if quarter == 4:
        end = date(year, 12, 31)
    else:
        end = date(year, 3 * quarter + 1, 1) - timedelta(days=1)
    return start, end


def current_quarter(today=None):
    today = today or date.today()
    return (today.month - 1) // 3 + 1, today.year


def month_date_range(day):
    start = day.replace(day=1)
    if start.month == 12:
        end = date(start.year + 1, 1, 1) - timedelta(days=1)
    else:
        end = date(start.year, start.month + 1, 1) - timedelta(days=1)
    return start, end


def _results_between(session, start=None, end=None):
    query = session.query(GameResult)
    if start:
        query = query.filter(GameResult.game_date >= start)
    if end:
        query = query.filter(GameResult.game_date <= end)
    return query.order_by(GameResult.game_date, GameResult.id).all()


def _nicknames(session, uids):
    uids = [u for u in uids if u]
    if not uids:
        return {}
    rows = session.query(Player.uid, Player.nickname).filter(Player.uid.in_(uids)).all()
    return {uid: nickname for uid, nickname in rows}


def _player_key(result):
    return result.player_uid or f'name:{result.name.lower()}'


def _aggregate(results):
    """Fold results into per-player totals. Bonus rows count towards points only."""
    totals = OrderedDict()
    for r in results:
        key = _player_key(r)
        entry = totals.get(key)
        if entry is None:
            entry = totals[key] = {
                'player_uid': r.player_uid,
                'name': r.name,
                'games': set(),
                'total_points': 0,
                'knockouts': 0,
                'final_tables': 0,
                'scores': [],
            }
        entry['total_points'] += r.total_points or 0
        if r.venue == BONUS_VENUE:
            continue
        entry['games'].add(r.game_uid)
        entry['knockouts'] += r.knockouts or 0
        if r.placement <= FINAL_TABLE_SIZE:
            entry['final_tables'] += 1
        entry['scores'].append(r.player_score or 0.0)
    return totals


def _average(values):
    return sum(values) / len(values) if values else 0.0


def quarterly_rankings(session, start, end, qualifying_spots=40):
    totals = _aggregate(_results_between(session, start, end))
    nicknames = _nicknames(session, [t['player_uid'] for t in totals.values()])
    players = []
    for entry in totals.values():
        games = len(entry['games'])
        if games < 1:
            continue
        players.append({
            'player_uid': entry['player_uid'],
            'name': entry['name'],
            'nickname': nicknames.get(entry['player_uid']),
            'games_played': games,
            'total_points': entry['total_points'],
            'knockouts': entry['knockouts'],
            'final_tables': entry['final_tables'],
            'avg_score': round(_average(entry['scores']), 4),
        })
    players.sort(key=lambda p: (-p['total_points'], -p['avg_score'], p['name'].lower()))
    for rank, player in enumerate(players, 1):
        games = player['games_played']
        player['ranking'] = rank
        player['qualified'] = rank <= qualifying_spots
        player['final_table_percentage'] = round(player['final_tables'] * 100.0 / games, 1)
        player['points_per_game'] = round(player['total_points'] / games, 2)
    return {
        'startDate': start.isoformat(),
        'endDate': end.isoformat(),
        'qualifyingSpots': qualifying_spots,
        'players': players,
    }


def monthly_rankings(session, start, end):
    """Overall month ranking plus each venue's top seven.

    A player qualifies by finishing top five at any venue; sixth or
    seventh at a venue without a qualifying spot elsewhere is the bubble.
    """
    results = [r for r in _results_between(session, start, end) if r.venue != BONUS_VENUE]
    overall = quarterly_rankings(session, start, end, qualifying_spots=0)['players']

    venues = OrderedDict()
    for r in results:
        venues.setdefault(r.venue, []).append(r)

    best_venue_rank = {}
    venue_tables = []
    for venue in sorted(venues):
        totals = _aggregate(venues[venue])
        rows = [
            {
                'player_uid': t['player_uid'],
                'name': t['name'],
                'total_points': t['total_points'],
                'games_played': len(t['games']),
                'avg_score': round(_average(t['scores']), 4),
            }
            for t in totals.values()
        ]
        rows.sort(key=lambda p: (-p['total_points'], -p['avg_score'], p['name'].lower()))
        rows = rows[:MONTHLY_VENUE_SPOTS]
        for rank, row in enumerate(rows, 1):
            row['venue_rank'] = rank
            key = row['player_uid'] or f'name:{row["name"].lower()}'
            best_venue_rank[key] = min(rank, best_venue_rank.get(key, rank))
        venue_tables.append({'venue': venue, 'players': rows})

    for player in overall:
        player.pop('qualified', None)
        key = player['player_uid'] or f'name:{player["name"].lower()}'
        best = best_venue_rank.get(key)
        player['best_venue_rank'] = best
        if best is not None and best <= MONTHLY_QUALIFY_RANK:
            player['status'] = 'qualified'
        elif best is not None:
            player['status'] = 'bubble'
        else:
            player['status'] = None
    return {
        'month': start.strftime('%Y-%m'),
        'startDate': start.isoformat(),
        'endDate': end.isoformat(),
        'overall': overall,
        'venues': venue_tables,
    }


def _player_names(session, uid, results):
    keys = {r.name.strip().lower() for r in results}
    player = session.query(Player).filter_by(uid=uid).first()
    if player:
        keys.add(player.name.strip().lower())
        if player.nickname:
            keys.add(player.nickname.strip().lower())
    return player, keys


def player_stats(session, uid, start=None, end=None):
    results = [r for r in _results_between(session, start, end) if r.player_uid == uid]
    player, names = _player_names(session, uid, results)
    if player is None and not results:
        return None

    played = [r for r in results if r.venue != BONUS_VENUE]
    knocked_out_by = Counter(r.hitman for r in played if r.hitman)

    victims = Counter()
    games = {r.game_uid for r in played}
    if games:
        rows = session.query(GameResult).filter(GameResult.game_uid.in_(games)).all()
        for r in rows:
            if r.hitman and r.hitman.strip().lower() in names and r.player_uid != uid:
                victims[r.name] += 1

    venue_points = OrderedDict()
    for r in results:
        venue_points[r.venue] = venue_points.get(r.venue, 0) + (r.total_points or 0)

    stats = {
        'player': player.to_dict() if player else {'uid': uid, 'name': results[0].name},
        'gamesPlayed': len(games),
        'totalPoints': sum(r.total_points or 0 for r in results),
        'knockouts': sum(r.knockouts or 0 for r in played),
        'wins': sum(1 for r in played if r.placement == 1),
        'finalTables': sum(1 for r in played if r.placement <= FINAL_TABLE_SIZE),
        'avgScore': round(_average([r.player_score or 0.0 for r in played]), 4),
        'mostKnockedOutBy': [{'name': n, 'count': c} for n, c in knocked_out_by.most_common(5)],
        'mostKnockedOut': [{'name': n, 'count': c} for n, c in victims.most_common(5)],
        'venuePoints': [{'venue': v, 'points': p} for v, p in venue_points.items()],
        'recentGames': [r.to_dict() for r in sorted(played, key=lambda r: (r.game_date, r.id), reverse=True)[:10]],
        'leagueRanking': None,
        'totalPlayers': None,
    }
    if start and end:
        standings = quarterly_rankings(session, start, end)['players']
        stats['totalPlayers'] = len(standings)
        for row in standings:
            if row['player_uid'] == uid:
                stats['leagueRanking'] = row['ranking']
                break
    return stats


def player_knockouts(session, uid):
    """Who this player has knocked out, and who has knocked them out, across every game."""
    own = session.query(GameResult).filter_by(player_uid=uid).all()
    _, names = _player_names(session, uid, own)
    victims = Counter()
    games = {r.game_uid for r in own}
    if games:
        for r in session.query(GameResult).filter(GameResult.game_uid.in_(games)).all():
            if r.hitman and r.hitman.strip().lower() in names and r.player_uid != uid:
                victims[r.name] += 1
    hitmen = Counter(r.hitman for r in own if r.hitman)
    return {
        'knockedOut': [{'name': n, 'count': c} for n, c in victims.most_common()],
        'knockedOutBy': [{'name': n, 'count': c} for n, c in hitmen.most_common()],
    }


def venue_list(session):
    rows = session.query(GameResult.venue, GameResult.game_uid).filter(GameResult.venue != BONUS_VENUE).all()
    games = OrderedDict()
    for venue, game_uid in rows:
        games.setdefault(venue, set()).add(game_uid)
    return [{'venue': v, 'games': len(g)} for v, g in sorted(games.items())]


def venue_stats(session, venue):
    results = session.query(GameResult).filter_by(venue=venue).all()
    if not results:
        return None
    totals = _aggregate(results)
    leaders = sorted(totals.values(), key=lambda t: (-t['total_points'], t['name'].lower()))[:10]
    return {
        'venue': venue,
        'games': len({r.game_uid for r in results}),
        'players': len(totals),
        'leaders': [
            {'player_uid': t['player_uid'], 'name': t['name'], 'total_points': t['total_points'],
             'games_played': len(t['games'])}
            for t in leaders
        ],
    }


def recent_games(session, limit=10):
    rows = session.query(GameResult).order_by(GameResult.game_date.desc(), GameResult.id.desc()).all()
    games = OrderedDict()
    for r in rows:
        game = games.get(r.game_uid)
        if game is None:
            if len(games) >= limit:
                continue
            game = games[r.game_uid] = {
                'game_uid': r.game_uid,
                'file_name': r.file_name,
                'venue': r.venue,
                'game_date': r.game_date.isoformat(),
                'players': 0,
                'winner': None,
            }
        game['players'] += 1
        if r.placement == 1:
            game['winner'] = r.name
    return list(games.values())


def game_results(session, game_uid):
    rows = session.query(GameResult).filter_by(game_uid=game_uid).order_by(GameResult.placement).all()
    return [r.to_dict() for r in rows]
