#!/usr/bin/env python
"""Populate the development database with a few weeks of league play."""
from __future__ import annotations

import argparse
import json
import random
from datetime import date, datetime, timedelta

from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pokerleague.app import create_app, db
from pokerleague import models
from pokerleague.scoring import integrate_draft

PLAYER_NAMES = [
    ("Alice Moreno", "Ace"), ("Ben Carter", "Bluff"), ("Chloe Park", "Chip"),
    ("Dan Okafor", None), ("Eva Lindqvist", "River"), ("Frank Ruiz", None),
    ("Grace Hall", "Nuts"), ("Hugo Brandt", None), ("Isla Novak", "Flush"),
    ("Jack Turner", None), ("Kira Sato", "Kicker"), ("Leo Marsh", None),
]
VENUES = ["The Crown", "Riverside Bar", "Oak Tavern"]


def ensure_roles() -> dict[str, models.Role]:
    """Ensure the default roles exist with up-to-date permissions."""
    roles: dict[str, models.Role] = {}
    for name, permissions in models.DEFAULT_ROLE_PERMISSIONS.items():
        role = models.Role.query.filter_by(name=name).first()
        if role is None:
            role = models.Role(name=name)
        role.permissions = json.dumps(permissions)
        role.level = models.DEFAULT_ROLE_LEVELS.get(name, 500)
        db.session.add(role)
        roles[name] = role
    db.session.commit()
    return roles


def ensure_admin_user(role: models.Role) -> models.User:
    admin = models.User.query.filter_by(email="admin@example.com").first()
    if admin is None:
        admin = models.User(email="admin@example.com", name="Admin User", is_admin=True, role=role)
        admin.set_password("admin123")
        db.session.add(admin)
        db.session.commit()
    return admin


def ensure_players() -> list[models.Player]:
    players = []
    for name, nickname in PLAYER_NAMES:
        player = models.Player.query.filter_by(name=name).first()
        if player is None:
            player = models.Player(name=name, nickname=nickname or name)
            db.session.add(player)
        players.append(player)
    db.session.commit()
    return players


def play_tournament(venue: str, when: date, field: list[models.Player], finish: bool) -> models.TournamentDraft:
    """Seat the field and knock players out one by one, leaving a winner when ``finish`` is set."""
    draft = models.TournamentDraft(
        tournament_date=when,
        tournament_time="19:30",
        director_name="Admin User",
        venue=venue,
        start_points=2,
    )
    db.session.add(draft)
    db.session.flush()
    rows = []
    for player in field:
        row = models.DraftEntrant(
            draft=draft,
            player_name=player.name,
            player_nickname=player.nickname,
            player_uid=player.uid,
        )
        db.session.add(row)
        rows.append(row)
    db.session.flush()

    order = rows[:]
    random.shuffle(order)
    knockouts = len(order) - 1 if finish else len(order) // 2
    clock = datetime.combine(when, datetime.min.time()) + timedelta(hours=20)
    for position, row in enumerate(order[:knockouts], 1):
        hitman = random.choice([r for r in order[position:]])
        clock += timedelta(minutes=random.randint(4, 15))
        row.status = models.ENTRANT_KNOCKED_OUT
        row.hitman_name = hitman.player_nickname or hitman.player_name
        row.ko_position = position
        row.knockedout_at = clock
    db.session.commit()
    return draft


def build_sample_world(reset: bool = False) -> None:
    if reset:
        db.drop_all()
    db.create_all()
    random.seed(7)

    roles = ensure_roles()
    ensure_admin_user(roles["admin"])
    players = ensure_players()

    if models.TournamentDraft.query.count() == 0:
        today = date.today()
        for weeks_ago in (3, 2, 1):
            when = today - timedelta(weeks=weeks_ago)
            for venue in VENUES:
                field = random.sample(players, random.randint(7, len(players)))
                draft = play_tournament(venue, when, field, finish=True)
                integrate_draft(draft, db.session)
        live = play_tournament(VENUES[0], today, players[:9], finish=False)
        live.check_in_token = "demo-checkin"
        db.session.add(models.FeedItem(
            draft=live,
            item_type="td_message",
            author_name="Admin User",
            message_text="Blinds go up in five minutes.",
        ))

    db.session.commit()
    print("Database populated with demo content.")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--reset", action="store_true", help="drop and recreate the database before loading data")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        build_sample_world(reset=args.reset)


if __name__ == "__main__":
    main()
