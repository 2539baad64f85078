from .app import db
from flask_login import UserMixin
from datetime import datetime
from sqlalchemy import UniqueConstraint
import uuid
import os
import hashlib
import json

from .integrity import Entrant

# Permission groups and default role permissions
PERMISSION_GROUPS = {
    'tournaments': {
        'manage': 'Create tournaments and record knockouts',
        'integrate': 'Integrate or revert finished tournaments',
    },
    'feed': {
        'post': 'Post chat messages and reactions to live feeds',
        'moderate': 'Post director messages, photos and delete feed items',
    },
    'players': {
        'manage': 'Edit league players',
    },
    'users': {
        'manage': 'Manage users',
    },
    'admin': {
        'panel': 'Access admin panel and audit logs',
    },
}


def all_permission_keys():
    keys = []
    for cat, perms in PERMISSION_GROUPS.items():
        for perm in perms:
            keys.append(f"{cat}.{perm}")
    return keys


DEFAULT_ROLE_PERMISSIONS = {
    'admin': {key: True for key in all_permission_keys()},
    'director': {
        'tournaments.manage': True,
        'tournaments.integrate': True,
        'feed.post': True,
        'feed.moderate': True,
        'players.manage': True,
    },
    'dealer': {
        'tournaments.manage': True,
        'feed.post': True,
        'feed.moderate': True,
    },
    'player': {
        'feed.post': True,
    },
}


DEFAULT_ROLE_LEVELS = {
    'admin': 0,
    'director': 100,
    'dealer': 300,
    'player': 500,
}

DRAFT_IN_PROGRESS = 'in_progress'
DRAFT_INTEGRATED = 'integrated'

ENTRANT_ACTIVE = 'active'
ENTRANT_KNOCKED_OUT = 'knockedout'


def _iso(value):
    return value.isoformat() if value else None


class Role(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    permissions = db.Column(db.Text, nullable=False, default='{}')
    level = db.Column(db.Integer, nullable=False, default=500)

    def permissions_dict(self):
        return json.loads(self.permissions or '{}')


class Player(db.Model):
    """A league member with history across integrated games."""
    id = db.Column(db.Integer, primary_key=True)
    uid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(120), nullable=False)
    nickname = db.Column(db.String(120), nullable=True)
    bio = db.Column(db.Text, nullable=True)
    favorite_hand = db.Column(db.String(20), nullable=True)
    photo_path = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def display_name(self):
        return self.nickname or self.name

    def to_dict(self):
        return {
            'uid': self.uid,
            'name': self.name,
            'nickname': self.nickname,
            'favorite_hand': self.favorite_hand,
            'photo_path': self.photo_path,
        }


class User(db.Model, UserMixin):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=True)
    name = db.Column(db.String(120), nullable=False)
    password_hash = db.Column(db.Text, nullable=True)
    salt = db.Column(db.String(32), nullable=True)
    is_admin = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    role_id = db.Column(db.Integer, db.ForeignKey('role.id'))
    role = db.relationship('Role')
    permission_overrides = db.Column(db.Text, nullable=True)
    player_uid = db.Column(db.String(36), db.ForeignKey('player.uid'), nullable=True)
    player = db.relationship('Player', foreign_keys=[player_uid])

    def set_password(self, pw):
        self.salt = os.urandom(16).hex()
        self.password_hash = hashlib.sha256((self.salt + pw).encode()).hexdigest()

    def check_password(self, pw):
        if not self.password_hash or not self.salt:
            return False
        return self.password_hash == hashlib.sha256((self.salt + pw).encode()).hexdigest()

    def permission_overrides_dict(self):
        try:
            return json.loads(self.permission_overrides or '{}')
        except ValueError:
            return {}

    def has_permission(self, key):
        if self.is_admin:
            return True
        overrides = self.permission_overrides_dict()
        if key in overrides:
            return overrides.get(key) == 'allow'
        if not self.role:
            return False
        return self.role.permissions_dict().get(key, False)

    def display_name(self):
        if self.player:
            return self.player.display_name()
        return self.name


class TournamentDraft(db.Model):
    """A tournament being run tonight, before it is integrated into league history."""
    id = db.Column(db.Integer, primary_key=True)
    tournament_date = db.Column(db.Date, nullable=False)
    tournament_time = db.Column(db.String(10), nullable=True)
    director_name = db.Column(db.String(120), nullable=False, default='')
    venue = db.Column(db.String(200), nullable=False)
    start_points = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default=DRAFT_IN_PROGRESS)
    created_by = db.Column(db.String(120), nullable=True)
    check_in_token = db.Column(db.String(36), unique=True, nullable=True)
    game_uid = db.Column(db.String(36), nullable=True)
    file_name = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def is_in_progress(self):
        return self.status == DRAFT_IN_PROGRESS

    def to_dict(self, player_count=None):
        if player_count is None:
            player_count = len(self.entrants)
        return {
            'id': self.id,
            'tournament_date': _iso(self.tournament_date),
            'tournament_time': self.tournament_time,
            'director_name': self.director_name,
            'venue': self.venue,
            'start_points': self.start_points,
            'status': self.status,
            'check_in_token': self.check_in_token,
            'game_uid': self.game_uid,
            'file_name': self.file_name,
            'player_count': player_count,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class DraftEntrant(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tournament_draft_id = db.Column(db.Integer, db.ForeignKey('tournament_draft.id'), nullable=False)
    player_name = db.Column(db.String(120), nullable=False)
    player_nickname = db.Column(db.String(120), nullable=True)
    player_uid = db.Column(db.String(36), nullable=True)
    is_new_player = db.Column(db.Boolean, default=False)
    hitman_name = db.Column(db.String(120), nullable=True)
    ko_position = db.Column(db.Integer, nullable=True)
    placement = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=ENTRANT_ACTIVE)
    knockedout_at = db.Column(db.DateTime, nullable=True)
    added_by = db.Column(db.String(20), default='admin')  # admin or self_checkin
    checked_in_at = db.Column(db.DateTime, default=datetime.utcnow)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    draft = db.relationship(
        'TournamentDraft',
        backref=db.backref('entrants', cascade='all, delete-orphan', order_by='DraftEntrant.id')
    )

    def display_name(self):
        return self.player_nickname or self.player_name

    def to_entrant(self):
        return Entrant(
            id=self.id,
            name=self.player_name,
            is_new_player=bool(self.is_new_player),
            hitman_name=self.hitman_name,
            ko_position=self.ko_position,
            placement=self.placement,
            knockedout_at=self.knockedout_at,
        )

    def apply_entrant(self, entrant):
        """Copy engine-computed fields back onto the row. Returns True when anything changed."""
        changed = False
        for field in ('ko_position', 'placement', 'knockedout_at'):
            value = getattr(entrant, field)
            if getattr(self, field) != value:
                setattr(self, field, value)
                changed = True
        return changed

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_draft_id': self.tournament_draft_id,
            'player_name': self.player_name,
            'player_nickname': self.player_nickname,
            'player_uid': self.player_uid,
            'is_new_player': bool(self.is_new_player),
            'hitman_name': self.hitman_name,
            'ko_position': self.ko_position,
            'placement': self.placement,
            'status': self.status,
            'knockedout_at': _iso(self.knockedout_at),
            'added_by': self.added_by,
            'checked_in_at': _iso(self.checked_in_at),
        }

    __table_args__ = (UniqueConstraint('tournament_draft_id', 'player_name', name='_draft_player_name_uc'),)


class GameResult(db.Model):
    """One integrated finishing position; the rows every statistic is built from."""
    id = db.Column(db.Integer, primary_key=True)
    game_uid = db.Column(db.String(36), nullable=False, index=True)
    file_name = db.Column(db.String(200), nullable=False)
    player_uid = db.Column(db.String(36), nullable=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    hitman = db.Column(db.String(120), nullable=True)
    placement = db.Column(db.Integer, nullable=False)
    knockouts = db.Column(db.Integer, default=0)
    start_points = db.Column(db.Integer, default=0)
    hit_points = db.Column(db.Integer, default=0)
    placement_points = db.Column(db.Integer, default=0)
    total_points = db.Column(db.Integer, default=0)
    season = db.Column(db.String(20), nullable=True)
    venue = db.Column(db.String(200), nullable=False)
    game_date = db.Column(db.Date, nullable=False, index=True)
    player_score = db.Column(db.Float, default=0.0)

    def to_dict(self):
        return {
            'id': self.id,
            'game_uid': self.game_uid,
            'file_name': self.file_name,
            'player_uid': self.player_uid,
            'name': self.name,
            'hitman': self.hitman,
            'placement': self.placement,
            'knockouts': self.knockouts,
            'start_points': self.start_points,
            'placement_points': self.placement_points,
            'total_points': self.total_points,
            'season': self.season,
            'venue': self.venue,
            'game_date': _iso(self.game_date),
            'player_score': round(self.player_score or 0.0, 4),
        }


class FeedItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tournament_draft_id = db.Column(db.Integer, db.ForeignKey('tournament_draft.id'), nullable=False)
    item_type = db.Column(db.String(20), nullable=False)  # message, checkin, system, td_message, photo
    author_uid = db.Column(db.String(36), nullable=True)
    author_name = db.Column(db.String(120), nullable=True)
    message_text = db.Column(db.Text, nullable=True)
    photo_path = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    draft = db.relationship(
        'TournamentDraft',
        backref=db.backref('feed_items', cascade='all, delete-orphan')
    )


class FeedReaction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    # string ids so computed knockout items ("ko-12") can be reacted to
    feed_item_id = db.Column(db.String(40), nullable=False)
    tournament_draft_id = db.Column(db.Integer, db.ForeignKey('tournament_draft.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    reaction_type = db.Column(db.String(10), nullable=False)
    count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User')
    draft = db.relationship(
        'TournamentDraft',
        backref=db.backref('reactions', cascade='all, delete-orphan')
    )

    __table_args__ = (
        UniqueConstraint('feed_item_id', 'tournament_draft_id', 'user_id', 'reaction_type',
                         name='_reaction_user_suit_uc'),
    )


class SiteLog(db.Model):
    __bind_key__ = 'logs'
    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(200), nullable=False)
    result = db.Column(db.String(200), nullable=False)
    error = db.Column(db.Text, nullable=True)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)
    user_id = db.Column(db.Integer, nullable=True)
    # relationship loaded manually to avoid cross-db foreign key


class AuditLog(db.Model):
    __bind_key__ = 'logs'
    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, nullable=False, index=True)
    action_type = db.Column(db.String(50), nullable=False)
    action_category = db.Column(db.String(20), nullable=False)  # player, knockout, tournament, feed
    actor_id = db.Column(db.Integer, nullable=True)
    actor_name = db.Column(db.String(120), nullable=True)
    target_player_id = db.Column(db.Integer, nullable=True)
    target_player_name = db.Column(db.String(120), nullable=True)
    previous_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    extra = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        def load(raw):
            if raw is None:
                return None
            try:
                return json.loads(raw)
            except ValueError:
                return raw
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'action_type': self.action_type,
            'action_category': self.action_category,
            'actor_id': self.actor_id,
            'actor_name': self.actor_name,
            'target_player_id': self.target_player_id,
            'target_player_name': self.target_player_name,
            'previous_value': load(self.previous_value),
            'new_value': load(self.new_value),
            'metadata': load(self.extra),
            'ip_address': self.ip_address,
            'created_at': _iso(self.created_at),
        }
