from datetime import date

import pytest

from pokerleague.models import GameResult, Player
from pokerleague.rankings import (
    quarter_date_range,
    current_quarter,
    month_date_range,
    quarterly_rankings,
    monthly_rankings,
    player_stats,
    player_knockouts,
)


def record_game(session, game_uid, venue, game_date, finishers):
    """finishers: (uid, name, hitman, knockouts, total_points, score) in placement order."""
    for placement, (uid, name, hitman, kos, points, score) in enumerate(finishers, 1):
        session.add(GameResult(
            game_uid=game_uid,
            file_name=f"{game_date.strftime('%m%d')}_{venue}",
            player_uid=uid,
            name=name,
            hitman=hitman,
            placement=placement,
            knockouts=kos,
            total_points=points,
            venue=venue,
            game_date=game_date,
            player_score=score,
        ))
    session.commit()


@pytest.fixture
def league(session):
    for uid, name, nickname in (('u-alice', 'Alice', 'Ace'), ('u-bob', 'Bob', None), ('u-cara', 'Cara', None)):
        session.add(Player(uid=uid, name=name, nickname=nickname))
    session.commit()
    record_game(session, 'g1', 'Crown', date(2026, 1, 10), [
        ('u-alice', 'Alice', None, 2, 12, 1.0),
        ('u-bob', 'Bob', 'Alice', 0, 9, 0.3),
        ('u-cara', 'Cara', 'Ace', 0, 8, 0.0),
    ])
    record_game(session, 'g2', 'Oak', date(2026, 2, 14), [
        ('u-bob', 'Bob', None, 2, 12, 1.0),
        ('u-cara', 'Cara', 'Bob', 0, 9, 0.3),
        ('u-alice', 'Alice', 'Bob', 0, 8, 0.0),
    ])
    record_game(session, 'b1', 'bonus', date(2026, 2, 20), [
        ('u-cara', 'Cara', None, 0, 5, 0.0),
    ])
    record_game(session, 'g3', 'Crown', date(2026, 4, 2), [
        ('u-alice', 'Alice', None, 1, 50, 1.0),
        ('u-bob', 'Bob', 'Alice', 0, 1, 0.0),
    ])


def test_date_ranges():
    assert quarter_date_range(1, 2026) == (date(2026, 1, 1), date(2026, 3, 31))
    assert quarter_date_range(4, 2026) == (date(2026, 10, 1), date(2026, 12, 31))
    with pytest.raises(ValueError):
        quarter_date_range(5, 2026)
    assert current_quarter(date(2026, 8, 1)) == (3, 2026)
    assert month_date_range(date(2026, 2, 14)) == (date(2026, 2, 1), date(2026, 2, 28))
    assert month_date_range(date(2026, 12, 3)) == (date(2026, 12, 1), date(2026, 12, 31))


def test_quarterly_rankings_include_bonus_points(session, league):
    start, end = quarter_date_range(1, 2026)
    standings = quarterly_rankings(session, start, end, qualifying_spots=2)
    players = standings['players']
    assert [p['name'] for p in players] == ['Cara', 'Bob', 'Alice']
    cara = players[0]
    assert cara['total_points'] == 22
    assert cara['games_played'] == 2
    assert cara['points_per_game'] == 11.0
    assert cara['final_table_percentage'] == 100.0
    assert [p['qualified'] for p in players] == [True, True, False]
    assert players[2]['nickname'] == 'Ace'
    assert players[2]['knockouts'] == 2


def test_monthly_rankings_mark_venue_qualifiers(session):
    field = [(None, f'P{i}', None, 0, 20 - i, 0.0) for i in range(1, 9)]
    record_game(session, 'm1', 'Crown', date(2026, 5, 9), field)
    start, end = month_date_range(date(2026, 5, 1))
    monthly = monthly_rankings(session, start, end)
    assert monthly['month'] == '2026-05'
    status = {p['name']: p['status'] for p in monthly['overall']}
    assert [status[f'P{i}'] for i in range(1, 9)] == ['qualified'] * 5 + ['bubble'] * 2 + [None]
    (venue,) = monthly['venues']
    assert venue['venue'] == 'Crown'
    assert len(venue['players']) == 7


def test_player_stats(session, league):
    stats = player_stats(session, 'u-alice')
    assert stats['player']['name'] == 'Alice'
    assert stats['gamesPlayed'] == 3
    assert stats['wins'] == 2
    assert stats['knockouts'] == 3
    assert stats['mostKnockedOutBy'] == [{'name': 'Bob', 'count': 1}]
    victims = {v['name']: v['count'] for v in stats['mostKnockedOut']}
    assert victims == {'Bob': 2, 'Cara': 1}
    assert stats['leagueRanking'] is None

    start, end = quarter_date_range(1, 2026)
    ranked = player_stats(session, 'u-alice', start, end)
    assert ranked['gamesPlayed'] == 2
    assert ranked['totalPoints'] == 20
    assert ranked['leagueRanking'] == 3
    assert ranked['totalPlayers'] == 3

    assert player_stats(session, 'nobody') is None


def test_player_knockouts_match_nickname(session, league):
    kos = player_knockouts(session, 'u-alice')
    assert {k['name']: k['count'] for k in kos['knockedOut']} == {'Bob': 2, 'Cara': 1}
    assert kos['knockedOutBy'] == [{'name': 'Bob', 'count': 1}]


def test_ranking_endpoints(client, league):
    body = client.get('/api/rankings/quarterly?quarter=1&year=2026').get_json()
    assert (body['quarter'], body['year']) == (1, 2026)
    assert [p['name'] for p in body['players']] == ['Cara', 'Bob', 'Alice']
    assert client.get('/api/rankings/quarterly?quarter=7&year=2026').status_code == 400

    monthly = client.get('/api/rankings/monthly?currentMonth=2026-02').get_json()
    assert monthly['month'] == '2026-02'
    assert [v['venue'] for v in monthly['venues']] == ['Oak']
    assert client.get('/api/rankings/monthly?currentMonth=soon').status_code == 400


def test_player_and_game_endpoints(client, league):
    stats = client.get('/api/players/u-bob/stats?startDate=2026-01-01&endDate=2026-03-31').get_json()
    assert stats['totalPoints'] == 21
    assert client.get('/api/players/missing/stats').status_code == 404
    kos = client.get('/api/players/u-bob/knockouts').get_json()
    assert {k['name']: k['count'] for k in kos['knockedOut']} == {'Cara': 1, 'Alice': 1}
    assert kos['knockedOutBy'] == [{'name': 'Alice', 'count': 2}]

    assert client.get('/api/venues').get_json() == [{'venue': 'Crown', 'games': 2}, {'venue': 'Oak', 'games': 1}]
    crown = client.get('/api/venues/Crown/stats').get_json()
    assert crown['games'] == 2
    assert crown['leaders'][0]['name'] == 'Alice'
    assert client.get('/api/venues/Nowhere/stats').status_code == 404

    recent = client.get('/api/games/recent?limit=2').get_json()
    assert [g['game_uid'] for g in recent] == ['g3', 'b1']
    assert recent[0]['winner'] == 'Alice'

    game = client.get('/api/games/g2').get_json()
    assert game['venue'] == 'Oak'
    assert [p['name'] for p in game['players']] == ['Bob', 'Cara', 'Alice']
    assert client.get('/api/games/nope').status_code == 404
