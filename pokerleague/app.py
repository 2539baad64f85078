from flask import (
    Flask,
    render_template,
    redirect,
    url_for,
    request,
    flash,
    abort,
    send_from_directory,
    Response,
    jsonify,
    stream_with_context,
)
from flask_sqlalchemy import SQLAlchemy
from flask_login import (
    LoginManager,
    login_user,
    logout_user,
    login_required,
    current_user,
)
from datetime import datetime, date
import os
import io
import json
import random
import secrets
import logging
import uuid

import click
from sqlalchemy import inspect, text, or_, func
from sqlalchemy.exc import IntegrityError as DBIntegrityError
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename
from PIL import Image, ImageOps

from .realtime import (
    Broadcaster,
    PLAYERS_UPDATED,
    FEED_ITEM,
    FEED_DELETED,
    REACTIONS_UPDATED,
    TOURNAMENT_UPDATED,
)


db = SQLAlchemy()
login_manager = LoginManager()
logger = logging.getLogger(__name__)


def create_app():
    app = Flask(__name__)
    db_file = os.environ.get('LEAGUE_DB_PATH', 'poker_league.db')
    log_db_file = os.environ.get('LEAGUE_LOG_DB_PATH', db_file.replace('.db', '_logs.db'))
    app.config['SQLALCHEMY_DATABASE_URI'] = f'sqlite:///{db_file}'
    os.makedirs(app.instance_path, exist_ok=True)
    db_base = os.path.splitext(os.path.basename(db_file))[0]
    media_dir = os.environ.get('LEAGUE_MEDIA_DIR') or os.path.join(app.instance_path, db_base)
    os.makedirs(media_dir, exist_ok=True)
    app.config['SQLALCHEMY_BINDS'] = {
        'logs': f'sqlite:///{log_db_file}',
    }
    app.config['MEDIA_STORAGE_DIR'] = media_dir
    app.config['BASE_URL'] = os.environ.get('LEAGUE_BASE_URL', 'http://localhost:5000').rstrip('/')
    app.config['QUALIFYING_SPOTS'] = int(os.environ.get('LEAGUE_QUALIFYING_SPOTS', '40'))
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SECRET_KEY'] = os.environ.get('FLASK_SECRET', 'dev-secret-change-me')

    db.init_app(app)
    login_manager.init_app(app)
    login_manager.login_view = 'login'
    broadcaster = Broadcaster()
    app.extensions['broadcaster'] = broadcaster

    # Upgrade databases created before knockout timestamps, self check-in
    # and player links existed.  Columns are added in place so older league
    # files keep working without a migration tool.
    with app.app_context():
        inspector = inspect(db.engine)
        if 'draft_entrant' in inspector.get_table_names():
            columns = [c['name'] for c in inspector.get_columns('draft_entrant')]
            if 'status' not in columns:
                db.session.execute(text("ALTER TABLE draft_entrant ADD COLUMN status VARCHAR(20) DEFAULT 'active'"))
                db.session.execute(text(
                    "UPDATE draft_entrant SET status = CASE WHEN ko_position IS NULL "
                    "THEN 'active' ELSE 'knockedout' END"
                ))
                db.session.commit()
            if 'knockedout_at' not in columns:
                db.session.execute(text('ALTER TABLE draft_entrant ADD COLUMN knockedout_at DATETIME'))
                db.session.commit()
            if 'added_by' not in columns:
                db.session.execute(text("ALTER TABLE draft_entrant ADD COLUMN added_by VARCHAR(20) DEFAULT 'admin'"))
                db.session.commit()
            if 'checked_in_at' not in columns:
                db.session.execute(text('ALTER TABLE draft_entrant ADD COLUMN checked_in_at DATETIME'))
                db.session.execute(text('UPDATE draft_entrant SET checked_in_at = created_at WHERE checked_in_at IS NULL'))
                db.session.commit()
        if 'tournament_draft' in inspector.get_table_names():
            columns = [c['name'] for c in inspector.get_columns('tournament_draft')]
            if 'check_in_token' not in columns:
                db.session.execute(text('ALTER TABLE tournament_draft ADD COLUMN check_in_token VARCHAR(36)'))
                db.session.commit()
            if 'tournament_time' not in columns:
                db.session.execute(text('ALTER TABLE tournament_draft ADD COLUMN tournament_time VARCHAR(10)'))
                db.session.commit()
        if 'user' in inspector.get_table_names():
            columns = [c['name'] for c in inspector.get_columns('user')]
            if 'permission_overrides' not in columns:
                db.session.execute(text('ALTER TABLE user ADD COLUMN permission_overrides TEXT'))
                db.session.commit()
            if 'player_uid' not in columns:
                db.session.execute(text('ALTER TABLE user ADD COLUMN player_uid VARCHAR(36)'))
                db.session.commit()
        if 'role' in inspector.get_table_names():
            columns = [c['name'] for c in inspector.get_columns('role')]
            if 'level' not in columns:
                db.session.execute(text('ALTER TABLE role ADD COLUMN level INTEGER DEFAULT 500'))
                db.session.execute(text('UPDATE role SET level=500 WHERE level IS NULL'))
                db.session.commit()
            from .models import DEFAULT_ROLE_LEVELS  # lazy import to avoid circular reference

            for role_name, level in DEFAULT_ROLE_LEVELS.items():
                db.session.execute(
                    text(
                        'UPDATE role SET level=:level WHERE name=:name AND (level IS NULL OR level != :level)'
                    ),
                    {'level': level, 'name': role_name},
                )
            db.session.commit()
        from .models import AuditLog  # lazy import to avoid circular reference

        AuditLog.__table__.create(bind=db.engines['logs'], checkfirst=True)

    from .models import (
        User,
        Role,
        Player,
        TournamentDraft,
        DraftEntrant,
        FeedItem,
        SiteLog,
        AuditLog,
        DEFAULT_ROLE_PERMISSIONS,
        DEFAULT_ROLE_LEVELS,
        DRAFT_IN_PROGRESS,
        ENTRANT_ACTIVE,
        ENTRANT_KNOCKED_OUT,
    )
    from .integrity import (
        KO_STEP,
        KnockoutMoveError,
        validate_entrants,
        derive_placements,
        has_auto_fixable_ko_issues,
        auto_fix_ko_positions,
        close_ko_gaps,
        move_knockout,
        format_export,
        export_filename,
    )
    from .scoring import IntegrationError, integrate_draft, revert_draft
    from . import rankings
    from . import feed as live_feed

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        if request.path.startswith('/api/'):
            return jsonify(error='Authentication required'), 401
        return redirect(url_for('login', next=request.path))

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        if exc.code and exc.code >= 400 and request.path.startswith('/api/'):
            return jsonify(error=exc.description or exc.name), exc.code
        return exc

    # ---------- CLI ----------
    def ensure_default_roles():
        for name, perms in DEFAULT_ROLE_PERMISSIONS.items():
            level = DEFAULT_ROLE_LEVELS.get(name, 500)
            existing = db.session.query(Role).filter_by(name=name).first()
            if not existing:
                db.session.add(Role(name=name, permissions=json.dumps(perms), level=level))
            elif existing.level != level:
                existing.level = level
        db.session.commit()

    @app.cli.command('db-init')
    def db_init():
        db.create_all()
        ensure_default_roles()
        # Ensure a default admin account exists for first-time login
        if not db.session.query(User).filter_by(email="admin@example.com").first():
            admin_role = db.session.query(Role).filter_by(name='admin').first()
            u = User(email="admin@example.com", name="Admin", role=admin_role, is_admin=True)
            u.set_password("admin123")
            db.session.add(u)
            db.session.commit()
            print("Created default admin: admin@example.com / admin123")
        print("Database initialized.")

    @app.cli.command('create-admin')
    @click.option('--email', help='Email for the admin user')
    @click.option('--password', help='Password for the admin user')
    def create_admin(email, password):
        if not email:
            email = click.prompt("Admin email", default="admin@example.com")
        if not password:
            password = click.prompt("Password", hide_input=True, confirmation_prompt=True)
        if db.session.query(User).filter_by(email=email).first():
            print("User exists")
            return
        ensure_default_roles()
        admin_role = db.session.query(Role).filter_by(name='admin').first()
        u = User(email=email, name="Admin", role=admin_role, is_admin=True)
        u.set_password(password)
        db.session.add(u)
        db.session.commit()
        print("Admin created.")

    @app.cli.command('export-tournament')
    @click.argument('tid', type=int)
    @click.option('--output', type=click.Path(dir_okay=False), help='Write to a file instead of stdout')
    def export_tournament_cmd(tid, output):
        draft = db.session.get(TournamentDraft, tid)
        if not draft:
            raise click.ClickException(f'Tournament {tid} not found')
        body = format_export(draft, [row.to_entrant() for row in draft.entrants])
        if output:
            with open(output, 'w') as handle:
                handle.write(body)
            click.echo(f'Wrote {output}')
        else:
            click.echo(body, nl=False)

    # ---------- Helpers ----------
    def require_permission(perm):
        if not current_user.is_authenticated or not current_user.has_permission(perm):
            log_site('unauthorized_access', 'failure', perm)
            abort(403)

    def require_admin():
        require_permission('admin.panel')

    def log_site(action, result, error=None):
        log = SiteLog(action=action, result=result, error=error,
                      user_id=current_user.id if current_user.is_authenticated else None)
        db.session.add(log)
        db.session.commit()

    def client_ip():
        forwarded = request.headers.get('X-Forwarded-For', '')
        if forwarded:
            return forwarded.split(',')[0].strip()
        return request.remote_addr

    def log_audit(tid, action_type, category, entrant=None, previous=None, new=None, extra=None, actor=None):
        def dump(value):
            return None if value is None else json.dumps(value, default=str)
        if actor is None and current_user.is_authenticated:
            actor = (current_user.id, current_user.display_name())
        log = AuditLog(
            tournament_id=tid,
            action_type=action_type,
            action_category=category,
            actor_id=actor[0] if actor else None,
            actor_name=actor[1] if actor else None,
            target_player_id=entrant.id if entrant is not None else None,
            target_player_name=entrant.player_name if entrant is not None else None,
            previous_value=dump(previous),
            new_value=dump(new),
            extra=dump(extra),
            ip_address=client_ip(),
        )
        db.session.add(log)
        db.session.commit()

    def json_body():
        return request.get_json(silent=True) or {}

    def api_error(message, status=400, **extra):
        return jsonify(error=message, **extra), status

    def parse_date(value):
        if not value:
            return None
        try:
            return date.fromisoformat(str(value).strip()[:10])
        except ValueError:
            return None

    def parse_int(value, default=None):
        if value is None or value == '':
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def invalid_position(value):
        if value is None or value == '':
            return False
        parsed = parse_int(value)
        return parsed is None or isinstance(value, bool) or parsed < 1

    def sanitize_image_upload(file_storage, prefix='photo', max_dim=1600):
        if not file_storage or not file_storage.filename:
            return None
        storage_dir = app.config.get('MEDIA_STORAGE_DIR')
        if not storage_dir:
            return None
        try:
            file_storage.stream.seek(0)
            image = Image.open(file_storage.stream)
            image = ImageOps.exif_transpose(image)
        except Exception:
            return None
        image.thumbnail((max_dim, max_dim))
        buffer = io.BytesIO()
        try:
            image.save(buffer, format='PNG')
        except Exception:
            return None
        buffer.seek(0)
        safe_prefix = ''.join(ch for ch in prefix if ch.isalnum()) or 'photo'
        filename = f"{safe_prefix}_{datetime.utcnow().strftime('%Y%m%d%H%M%S')}_{secrets.token_hex(4)}.png"
        os.makedirs(storage_dir, exist_ok=True)
        path = os.path.join(storage_dir, filename)
        with open(path, 'wb') as handle:
            handle.write(buffer.read())
        return filename

    def remove_media(filename):
        if not filename:
            return
        path = os.path.join(app.config['MEDIA_STORAGE_DIR'], secure_filename(filename))
        if os.path.exists(path):
            os.remove(path)

    def publish(tid, event_type, data=None):
        broadcaster.publish(tid, event_type, data)

    def get_draft(tid):
        draft = db.session.get(TournamentDraft, tid)
        if not draft:
            abort(404, 'Tournament draft not found')
        return draft

    def get_open_draft(tid):
        draft = get_draft(tid)
        if not draft.is_in_progress():
            abort(400, 'Tournament is not in progress')
        return draft

    def get_entrant(draft, pid):
        entrant = db.session.get(DraftEntrant, pid)
        if not entrant or entrant.tournament_draft_id != draft.id:
            abort(404, 'Player not found in this tournament')
        return entrant

    def draft_by_token(token, open_only=True):
        query = db.session.query(TournamentDraft).filter_by(check_in_token=token)
        if open_only:
            query = query.filter_by(status=DRAFT_IN_PROGRESS)
        draft = query.first()
        if not draft:
            abort(404, 'Tournament not found or check-in not available')
        return draft

    def validation_payload(draft):
        snapshot = [row.to_entrant() for row in draft.entrants]
        result = validate_entrants(snapshot)
        payload = result.to_dict()
        payload['autoFixAvailable'] = has_auto_fixable_ko_issues(result, snapshot)
        payload['placements'] = []
        if result.can_integrate:
            payload['placements'] = [
                {'id': e.id, 'name': e.name, 'placement': e.placement, 'ko_position': e.ko_position}
                for e in derive_placements(snapshot)
            ]
        return payload

    def publish_players(draft):
        publish(draft.id, PLAYERS_UPDATED, {
            'players': [row.to_dict() for row in draft.entrants],
            'validation': validation_payload(draft),
        })

    def apply_snapshot(draft, entrants):
        rows = {row.id: row for row in draft.entrants}
        return sum(1 for e in entrants if rows[e.id].apply_entrant(e))

    def renumber_knockouts(draft):
        return apply_snapshot(draft, close_ko_gaps([row.to_entrant() for row in draft.entrants]))

    def checkin_url(token):
        return f"{app.config['BASE_URL']}/checkin/{token}"

    def add_feed_item(draft, item_type, message_text=None, photo_path=None, author=None):
        if author is None and current_user.is_authenticated:
            author = (current_user.player_uid, current_user.display_name())
        item = FeedItem(
            tournament_draft_id=draft.id,
            item_type=item_type,
            author_uid=author[0] if author else None,
            author_name=author[1] if author else None,
            message_text=message_text,
            photo_path=photo_path,
        )
        db.session.add(item)
        db.session.commit()
        data = live_feed.serialize_item(item)
        data['reactions'] = live_feed.empty_suits()
        publish(draft.id, FEED_ITEM, data)
        return item

    def feed_item_exists(draft, item_id):
        if item_id.startswith('ko-'):
            pid = parse_int(item_id[3:])
            row = db.session.get(DraftEntrant, pid) if pid is not None else None
            return bool(row and row.tournament_draft_id == draft.id and row.status == ENTRANT_KNOCKED_OUT)
        fid = parse_int(item_id)
        item = db.session.get(FeedItem, fid) if fid is not None else None
        return bool(item and item.tournament_draft_id == draft.id)

    # ---------- Accounts ----------
    @app.route('/')
    def index():
        drafts = (
            db.session.query(TournamentDraft)
            .filter_by(status=DRAFT_IN_PROGRESS)
            .order_by(TournamentDraft.tournament_date.desc())
            .all()
        )
        return render_template('index.html', drafts=drafts,
                               recent=rankings.recent_games(db.session, limit=10))

    @app.route('/register', methods=['GET', 'POST'])
    def register():
        if request.method == 'POST':
            email = request.form['email'].strip().lower()
            name = request.form['name'].strip()
            password = request.form['password']
            confirm = request.form.get('password_confirm', '')
            if not name or not password:
                flash("Name and password are required", "error")
                return redirect(url_for('register'))
            if password != confirm:
                flash("Passwords do not match", "error")
                log_site('register', 'failure', 'password mismatch')
                return redirect(url_for('register'))
            if db.session.query(User).filter_by(email=email).first():
                flash("Email already registered", "error")
                log_site('register', 'failure', 'email exists')
                return redirect(url_for('register'))
            # claim an existing league player with the same name, otherwise start a new one
            claimed = db.session.query(User.player_uid).filter(User.player_uid.isnot(None))
            player = (
                db.session.query(Player)
                .filter(func.lower(Player.name) == name.lower(), ~Player.uid.in_(claimed))
                .first()
            )
            if not player:
                player = Player(uid=str(uuid.uuid4()), name=name, nickname=name)
                db.session.add(player)
            role_player = db.session.query(Role).filter_by(name='player').first()
            u = User(email=email, name=name, role=role_player, player_uid=player.uid)
            u.set_password(password)
            db.session.add(u)
            db.session.commit()
            log_site('register', 'success')
            flash("Registered. Please login.", "success")
            return redirect(url_for('login'))
        return render_template('register.html')

    @app.route('/login', methods=['GET', 'POST'])
    def login():
        if request.method == 'POST':
            email = request.form['email'].strip().lower()
            password = request.form['password']
            u = db.session.query(User).filter_by(email=email).first()
            if u and u.check_password(password):
                login_user(u)
                log_site('login', 'success')
                return redirect(url_for('index'))
            flash("Invalid credentials", "error")
            log_site('login', 'failure', 'invalid credentials')
        return render_template('login.html')

    @app.route('/logout')
    @login_required
    def logout():
        log_site('logout', 'success')
        logout_user()
        return redirect(url_for('index'))

    @app.route('/api/profile', methods=['GET', 'PUT'])
    @login_required
    def api_profile():
        player = current_user.player
        if request.method == 'PUT':
            if not player:
                return api_error('No league player linked to this account', 404)
            data = json_body()
            if 'nickname' in data:
                nickname = (data.get('nickname') or '').strip()
                if len(nickname) > 120:
                    return api_error('Nickname is too long')
                player.nickname = nickname or None
            if 'favorite_hand' in data:
                hand = (data.get('favorite_hand') or '').strip()
                if len(hand) > 20:
                    return api_error('Favorite hand is too long')
                player.favorite_hand = hand or None
            if 'bio' in data:
                player.bio = (data.get('bio') or '').strip() or None
            db.session.commit()
            log_site('update_profile', 'success')
        return jsonify(
            id=current_user.id,
            email=current_user.email,
            name=current_user.name,
            player=player.to_dict() if player else None,
        )

    @app.route('/api/profile/password', methods=['POST'])
    @login_required
    def api_change_password():
        data = json_body()
        current = data.get('current_password') or ''
        new = data.get('new_password') or ''
        if not current_user.check_password(current):
            log_site('change_password', 'failure', 'wrong password')
            return api_error('Current password is incorrect')
        if len(new) < 6:
            return api_error('New password must be at least 6 characters')
        current_user.set_password(new)
        db.session.commit()
        log_site('change_password', 'success')
        return jsonify(success=True)

    @app.route('/api/profile/photo', methods=['POST'])
    @login_required
    def api_profile_photo():
        player = current_user.player
        if not player:
            return api_error('No league player linked to this account', 404)
        filename = sanitize_image_upload(request.files.get('photo'), prefix='profile', max_dim=512)
        if not filename:
            log_site('profile_photo', 'failure', 'invalid image')
            return api_error('Image could not be processed. Please upload a different picture.')
        remove_media(player.photo_path)
        player.photo_path = filename
        db.session.commit()
        log_site('profile_photo', 'success')
        return jsonify(success=True, photo_path=filename, url=url_for('media_file', filename=filename))

    @app.route('/media/<path:filename>')
    def media_file(filename):
        media_dir = app.config.get('MEDIA_STORAGE_DIR')
        if not media_dir:
            abort(404)
        safe_name = secure_filename(os.path.basename(filename))
        path = os.path.join(media_dir, safe_name)
        if not os.path.exists(path):
            abort(404)
        return send_from_directory(media_dir, safe_name)

    # ---------- Players ----------
    @app.route('/api/players/search')
    def api_player_search():
        term = (request.args.get('q') or '').strip()
        results = []
        if term:
            pattern = f"%{term}%"
            players = (
                db.session.query(Player)
                .filter(or_(Player.name.ilike(pattern), Player.nickname.ilike(pattern)))
                .order_by(Player.name)
                .limit(10)
                .all()
            )
            results = [p.to_dict() for p in players]
        return {'results': results}

    @app.route('/api/admin/players/<uid>/nickname', methods=['PUT'])
    def api_update_nickname(uid):
        require_permission('players.manage')
        player = db.session.query(Player).filter_by(uid=uid).first()
        if not player:
            return api_error('Player not found', 404)
        nickname = (json_body().get('nickname') or '').strip()
        previous = player.nickname
        player.nickname = nickname or None
        db.session.commit()
        log_site('update_nickname', 'success', f'{uid}: {previous} -> {player.nickname}')
        return jsonify(player.to_dict())

    @app.route('/api/admin/users/<int:user_id>/role', methods=['PUT'])
    def api_set_user_role(user_id):
        require_permission('users.manage')
        user = db.session.get(User, user_id)
        if not user:
            return api_error('User not found', 404)
        role = db.session.query(Role).filter_by(name=json_body().get('role')).first()
        if not role:
            return api_error('Unknown role')
        if not current_user.is_admin and current_user.role and role.level < current_user.role.level:
            abort(403)
        user.role = role
        db.session.commit()
        log_site('set_user_role', 'success', f'{user.id}: {role.name}')
        return jsonify(id=user.id, role=role.name)

    # ---------- Tournament drafts ----------
    @app.route('/api/tournament-drafts', methods=['GET', 'POST'])
    def api_drafts():
        require_permission('tournaments.manage')
        if request.method == 'POST':
            data = json_body()
            tournament_date = parse_date(data.get('tournament_date'))
            venue = (data.get('venue') or '').strip()
            if not tournament_date or not venue:
                return api_error('Tournament date and venue are required')
            draft = TournamentDraft(
                tournament_date=tournament_date,
                tournament_time=(data.get('tournament_time') or None),
                director_name=(data.get('director_name') or '').strip(),
                venue=venue,
                start_points=parse_int(data.get('start_points'), 0),
                created_by=current_user.display_name(),
            )
            db.session.add(draft)
            db.session.commit()
            log_audit(draft.id, 'tournament_created', 'tournament', new=draft.to_dict(0))
            return jsonify(draft.to_dict(0)), 201

        counts = dict(
            db.session.query(DraftEntrant.tournament_draft_id, func.count(DraftEntrant.id))
            .group_by(DraftEntrant.tournament_draft_id)
            .all()
        )
        query = db.session.query(TournamentDraft)
        status = request.args.get('status')
        if status:
            query = query.filter_by(status=status)
        drafts = query.order_by(TournamentDraft.tournament_date.desc(), TournamentDraft.id.desc()).all()
        return jsonify([d.to_dict(counts.get(d.id, 0)) for d in drafts])

    @app.route('/api/tournament-drafts/<int:tid>', methods=['GET', 'PUT', 'DELETE'])
    def api_draft(tid):
        require_permission('tournaments.manage')
        draft = get_draft(tid)
        if request.method == 'GET':
            return jsonify(draft.to_dict())
        if request.method == 'DELETE':
            if not draft.is_in_progress():
                return api_error('Only in-progress tournaments can be deleted')
            previous = draft.to_dict()
            db.session.delete(draft)
            db.session.commit()
            log_audit(tid, 'tournament_deleted', 'tournament', previous=previous)
            publish(tid, TOURNAMENT_UPDATED, {'deleted': True})
            return jsonify(success=True)

        data = json_body()
        previous = draft.to_dict()
        if 'tournament_date' in data:
            parsed = parse_date(data.get('tournament_date'))
            if not parsed:
                return api_error('Invalid tournament date')
            draft.tournament_date = parsed
        if 'venue' in data:
            venue = (data.get('venue') or '').strip()
            if not venue:
                return api_error('Venue is required')
            draft.venue = venue
        if 'director_name' in data:
            draft.director_name = (data.get('director_name') or '').strip()
        if 'start_points' in data:
            draft.start_points = parse_int(data.get('start_points'), draft.start_points)
        if 'tournament_time' in data:
            draft.tournament_time = data.get('tournament_time') or None
        db.session.commit()
        log_audit(tid, 'tournament_updated', 'tournament', previous=previous, new=draft.to_dict())
        publish(tid, TOURNAMENT_UPDATED, draft.to_dict())
        return jsonify(draft.to_dict())

    @app.route('/api/tournament-drafts/<int:tid>/players', methods=['GET', 'POST'])
    def api_draft_players(tid):
        require_permission('tournaments.manage')
        draft = get_draft(tid)
        if request.method == 'GET':
            return jsonify([row.to_dict() for row in draft.entrants])

        if not draft.is_in_progress():
            return api_error('Tournament is not in progress')
        data = json_body()
        name = (data.get('player_name') or '').strip()
        nickname = (data.get('player_nickname') or '').strip() or None
        player_uid = data.get('player_uid') or None
        if player_uid:
            player = db.session.query(Player).filter_by(uid=player_uid).first()
            if not player:
                return api_error('Player not found', 404)
            name = name or player.name
            nickname = nickname or player.nickname
        if not name:
            return api_error('Player name is required')
        if any(row.player_name.lower() == name.lower() for row in draft.entrants):
            return api_error('Player already added to this tournament')
        row = DraftEntrant(
            tournament_draft_id=draft.id,
            player_name=name,
            player_nickname=nickname,
            player_uid=player_uid,
            is_new_player=not player_uid,
            added_by='admin',
            checked_in_at=datetime.utcnow(),
        )
        db.session.add(row)
        try:
            db.session.commit()
        except DBIntegrityError:
            db.session.rollback()
            return api_error('Player already added to this tournament')
        log_audit(tid, 'player_added', 'player', entrant=row, new=row.to_dict())
        publish_players(draft)
        return jsonify(row.to_dict()), 201

    @app.route('/api/tournament-drafts/<int:tid>/players/batch', methods=['PUT'])
    def api_batch_update(tid):
        require_permission('tournaments.manage')
        draft = get_open_draft(tid)
        updates = json_body().get('players')
        if not isinstance(updates, list) or not updates:
            return api_error('players must be a non-empty list')
        rows = {row.id: row for row in draft.entrants}
        for update in updates:
            if not isinstance(update, dict) or parse_int(update.get('id')) not in rows:
                return api_error('Every update needs the id of a player in this tournament')
            if any(invalid_position(update.get(field)) for field in ('ko_position', 'placement')):
                return api_error('ko_position and placement must be positive whole numbers')
        changes = []
        for update in updates:
            row = rows[parse_int(update.get('id'))]
            previous = row.to_dict()
            for field in ('hitman_name', 'player_nickname'):
                if field in update:
                    setattr(row, field, (update.get(field) or '').strip() or None)
            for field in ('ko_position', 'placement'):
                if field in update:
                    setattr(row, field, parse_int(update.get(field)))
            changes.append((row, previous))
        db.session.commit()
        for row, previous in changes:
            log_audit(tid, 'player_updated', 'player', entrant=row, previous=previous,
                      new=row.to_dict(), extra={'batch': True})
        publish_players(draft)
        return jsonify([row.to_dict() for row in draft.entrants])

    @app.route('/api/tournament-drafts/<int:tid>/players/<int:pid>', methods=['PUT', 'DELETE'])
    def api_draft_player(tid, pid):
        require_permission('tournaments.manage')
        draft = get_open_draft(tid)
        row = get_entrant(draft, pid)
        previous = row.to_dict()
        if request.method == 'DELETE':
            db.session.delete(row)
            db.session.commit()
            draft = get_draft(tid)
            renumber_knockouts(draft)
            db.session.commit()
            log_audit(tid, 'player_removed', 'player', previous=previous,
                      extra={'player_id': pid, 'player_name': previous['player_name']})
            publish_players(draft)
            return jsonify(success=True)

        data = json_body()
        if any(invalid_position(data.get(field)) for field in ('ko_position', 'placement')):
            return api_error('ko_position and placement must be positive whole numbers')
        if 'player_name' in data:
            name = (data.get('player_name') or '').strip()
            if not name:
                return api_error('Player name is required')
            if any(r.id != row.id and r.player_name.lower() == name.lower() for r in draft.entrants):
                return api_error('Player already added to this tournament')
            row.player_name = name
        for field in ('player_nickname', 'hitman_name'):
            if field in data:
                setattr(row, field, (data.get(field) or '').strip() or None)
        for field in ('ko_position', 'placement'):
            if field in data:
                setattr(row, field, parse_int(data.get(field)))
        db.session.commit()
        log_audit(tid, 'player_updated', 'player', entrant=row, previous=previous, new=row.to_dict())
        publish_players(draft)
        return jsonify(row.to_dict())

    @app.route('/api/tournament-drafts/<int:tid>/players/<int:pid>/knockout', methods=['POST'])
    def api_knockout(tid, pid):
        require_permission('tournaments.manage')
        draft = get_open_draft(tid)
        row = get_entrant(draft, pid)
        if row.status == ENTRANT_KNOCKED_OUT:
            return api_error('Player is already knocked out')
        previous = row.to_dict()
        hitman = (json_body().get('hitman_name') or '').strip() or None
        now = datetime.utcnow()
        latest = max((r.knockedout_at for r in draft.entrants if r.knockedout_at), default=None)
        if latest is not None and now <= latest:
            now = latest + KO_STEP
        row.status = ENTRANT_KNOCKED_OUT
        row.hitman_name = hitman
        row.knockedout_at = now
        row.ko_position = sum(1 for r in draft.entrants if r.ko_position is not None and r.id != row.id) + 1
        renumber_knockouts(draft)
        db.session.commit()
        log_audit(tid, 'knockout', 'knockout', entrant=row, previous=previous, new=row.to_dict())
        item = next((i for i in live_feed.knockout_items(draft) if i['id'] == f'ko-{row.id}'), None)
        if item:
            item['reactions'] = live_feed.empty_suits()
            publish(tid, FEED_ITEM, item)
        publish_players(draft)
        return jsonify(row.to_dict())

    @app.route('/api/tournament-drafts/<int:tid>/players/<int:pid>/restore', methods=['POST'])
    def api_restore(tid, pid):
        require_permission('tournaments.manage')
        draft = get_open_draft(tid)
        row = get_entrant(draft, pid)
        if row.status != ENTRANT_KNOCKED_OUT and row.ko_position is None:
            return api_error('Player is not knocked out')
        previous = row.to_dict()
        row.status = ENTRANT_ACTIVE
        row.hitman_name = None
        row.ko_position = None
        row.knockedout_at = None
        row.placement = None
        renumber_knockouts(draft)
        db.session.commit()
        log_audit(tid, 'knockout_restored', 'knockout', entrant=row, previous=previous, new=row.to_dict())
        publish(tid, FEED_DELETED, {'id': f'ko-{row.id}'})
        publish_players(draft)
        return jsonify(row.to_dict())

    @app.route('/api/tournament-drafts/<int:tid>/players/<int:pid>/move-knockout', methods=['PUT'])
    def api_move_knockout(tid, pid):
        require_permission('tournaments.manage')
        draft = get_open_draft(tid)
        data = json_body()
        # either casing; a missing key or null means move to first
        after_id = data.get('afterPlayerId', data.get('after_player_id'))
        if after_id is not None and (isinstance(after_id, bool) or not isinstance(after_id, int)):
            return api_error('afterPlayerId must be a player id, or null to move to first')
        snapshot = [row.to_entrant() for row in draft.entrants]
        try:
            result = move_knockout(snapshot, pid, after_id)
        except KnockoutMoveError as exc:
            return api_error(str(exc), 404)
        before = {e.id: e.ko_position for e in snapshot}
        apply_snapshot(draft, result.entrants)
        db.session.commit()
        row = get_entrant(draft, pid)
        log_audit(tid, 'knockout_moved', 'knockout', entrant=row,
                  previous={'ko_position': before.get(pid)},
                  new={'ko_position': result.ko_position},
                  extra={'after_player_id': after_id, 'shifted_count': result.shifted_count})
        publish_players(draft)
        return jsonify(success=True, ko_position=result.ko_position, shiftedCount=result.shifted_count)

    @app.route('/api/tournament-drafts/<int:tid>/validation')
    def api_validation(tid):
        require_permission('tournaments.manage')
        return jsonify(validation_payload(get_draft(tid)))

    @app.route('/api/tournament-drafts/<int:tid>/auto-fix', methods=['POST'])
    def api_auto_fix(tid):
        require_permission('tournaments.manage')
        draft = get_open_draft(tid)
        snapshot = [row.to_entrant() for row in draft.entrants]
        result = validate_entrants(snapshot)
        if not has_auto_fixable_ko_issues(result, snapshot):
            return api_error('No automatically fixable KO issues', errors=result.errors)
        before = {e.id: e.ko_position for e in snapshot}
        changed = apply_snapshot(draft, auto_fix_ko_positions(snapshot))
        db.session.commit()
        log_audit(tid, 'ko_auto_fixed', 'knockout', previous=before,
                  new={row.id: row.ko_position for row in draft.entrants},
                  extra={'changed': changed, 'errors': result.errors})
        publish_players(draft)
        payload = validation_payload(draft)
        payload['changed'] = changed
        return jsonify(payload)

    @app.route('/api/tournament-drafts/<int:tid>/export')
    def api_export(tid):
        require_permission('tournaments.manage')
        draft = get_draft(tid)
        body = format_export(draft, [row.to_entrant() for row in draft.entrants])
        return Response(
            body,
            mimetype='text/plain',
            headers={'Content-Disposition': f'attachment; filename={export_filename(draft)}'},
        )

    @app.route('/api/tournament-drafts/<int:tid>/integrate', methods=['POST'])
    def api_integrate(tid):
        require_permission('tournaments.integrate')
        draft = get_draft(tid)
        try:
            summary = integrate_draft(draft, db.session)
        except IntegrationError as exc:
            db.session.rollback()
            log_site('integrate_tournament', 'failure', str(exc))
            return api_error(str(exc), errors=exc.errors)
        logger.info('Integrated tournament %s as %s (%s players)', tid, summary['fileName'],
                    summary['playersProcessed'])
        log_audit(tid, 'tournament_integrated', 'tournament', new=summary)
        publish(tid, TOURNAMENT_UPDATED, draft.to_dict())
        return jsonify(summary)

    @app.route('/api/tournament-drafts/<int:tid>/revert', methods=['POST'])
    def api_revert(tid):
        require_permission('tournaments.integrate')
        draft = get_draft(tid)
        game_uid = draft.game_uid
        try:
            summary = revert_draft(draft, db.session)
        except IntegrationError as exc:
            db.session.rollback()
            log_site('revert_tournament', 'failure', str(exc))
            return api_error(str(exc))
        logger.info('Reverted tournament %s (game %s)', tid, game_uid)
        log_audit(tid, 'tournament_reverted', 'tournament', previous={'game_uid': game_uid}, new=summary)
        publish(tid, TOURNAMENT_UPDATED, draft.to_dict())
        return jsonify(summary)

    @app.route('/api/tournament-drafts/<int:tid>/random-bounty')
    def api_random_bounty(tid):
        require_permission('tournaments.manage')
        draft = get_draft(tid)
        checked_in = [row for row in draft.entrants if row.checked_in_at is not None]
        if not checked_in:
            return api_error('No checked-in players found', 404)
        selected = random.choice(checked_in)
        return jsonify(playerName=selected.display_name(), totalPlayers=len(checked_in))

    # ---------- Check-in ----------
    @app.route('/api/tournaments/<int:tid>/checkin-token', methods=['POST'])
    def api_checkin_token(tid):
        require_permission('tournaments.manage')
        draft = get_open_draft(tid)
        if not draft.check_in_token:
            draft.check_in_token = str(uuid.uuid4())
            db.session.commit()
            log_audit(tid, 'checkin_opened', 'tournament', new={'token': draft.check_in_token})
        return jsonify(token=draft.check_in_token, url=checkin_url(draft.check_in_token))

    @app.route('/api/checkin/<token>')
    def api_checkin_info(token):
        draft = draft_by_token(token)
        return jsonify(
            id=draft.id,
            venue=draft.venue,
            tournament_date=draft.tournament_date.isoformat(),
            tournament_time=draft.tournament_time,
            director_name=draft.director_name,
            player_count=len(draft.entrants),
        )

    def complete_checkin(draft, name, player_uid, nickname=None):
        row = DraftEntrant(
            tournament_draft_id=draft.id,
            player_name=name,
            player_nickname=nickname,
            player_uid=player_uid,
            is_new_player=not player_uid,
            added_by='self_checkin',
            checked_in_at=datetime.utcnow(),
        )
        db.session.add(row)
        db.session.commit()
        log_audit(draft.id, 'player_checked_in', 'player', entrant=row, new=row.to_dict())
        add_feed_item(draft, live_feed.ITEM_CHECKIN, f'{row.display_name()} checked in',
                      author=(player_uid, row.display_name()))
        publish_players(draft)
        message = "Welcome! You've been added as a new player." if not player_uid else f'Welcome back, {name}!'
        return jsonify(type='success', player=row.to_dict(), message=message)

    @app.route('/api/checkin/<token>/players', methods=['GET', 'POST', 'PUT'])
    def api_checkin_players(token):
        draft = draft_by_token(token)
        if request.method == 'GET':
            rows = sorted(draft.entrants, key=lambda r: (r.checked_in_at or datetime.min, r.id), reverse=True)
            return jsonify([
                {'id': r.id, 'player_name': r.display_name(), 'checked_in_at': r.to_dict()['checked_in_at'],
                 'added_by': r.added_by}
                for r in rows
            ])

        data = json_body()
        if request.method == 'PUT':
            selected = data.get('selected_player_uid')
            entered = (data.get('entered_name') or '').strip()
            if selected == 'new_player':
                if not entered:
                    return api_error('Player name is required')
                name, uid, nickname = entered, None, None
            else:
                player = db.session.query(Player).filter_by(uid=selected).first() if selected else None
                if not player:
                    return api_error('Selected player not found')
                name, uid, nickname = player.name, player.uid, player.nickname
            for r in draft.entrants:
                if r.player_name.lower() == name.lower() or (uid and r.player_uid == uid):
                    return api_error('This player has already checked in for this tournament')
            return complete_checkin(draft, name, uid, nickname)

        name = (data.get('player_name') or '').strip()
        if not name:
            return api_error('Player name is required')
        if any(r.player_name.lower() == name.lower() for r in draft.entrants):
            return jsonify(type='error', error='You have already checked in for this tournament')
        pattern = f'%{name}%'
        candidates = (
            db.session.query(Player)
            .filter(or_(Player.name.ilike(pattern), Player.nickname.ilike(pattern)))
            .order_by(Player.name)
            .limit(10)
            .all()
        )
        lowered = name.lower()
        exact = next(
            (p for p in candidates
             if p.name.lower() == lowered or (p.nickname and p.nickname.lower() == lowered)),
            None,
        )
        if exact:
            if any(r.player_uid == exact.uid for r in draft.entrants):
                return jsonify(type='error', error='You have already checked in for this tournament')
            return complete_checkin(draft, exact.name, exact.uid, exact.nickname)
        if candidates:
            return jsonify(
                type='suggestions',
                suggestions=[{'name': p.name, 'uid': p.uid, 'nickname': p.nickname} for p in candidates[:3]],
                entered_name=name,
            )
        return complete_checkin(draft, name, None)

    @app.route('/checkin/<token>')
    def checkin_page(token):
        draft = draft_by_token(token)
        return render_template('checkin.html', draft=draft, token=token)

    # ---------- Live feed ----------
    @app.route('/api/tournament-drafts/<int:tid>/feed', methods=['GET', 'POST'])
    def api_feed(tid):
        draft = get_draft(tid)
        if request.method == 'GET':
            user_id = current_user.id if current_user.is_authenticated else None
            try:
                page = live_feed.build_feed(db.session, draft, request.args.get('limit'),
                                            request.args.get('before'), user_id)
            except ValueError as exc:
                return api_error(str(exc))
            return jsonify(page)

        if not current_user.is_authenticated:
            return api_error('Authentication required', 401)
        require_permission('feed.post')
        if not draft.is_in_progress():
            return api_error('Tournament is not in progress')
        message = (json_body().get('message_text') or '').strip()
        if not message:
            return api_error('Message cannot be empty')
        if len(message) > live_feed.MAX_MESSAGE_LENGTH:
            return api_error(f'Message cannot exceed {live_feed.MAX_MESSAGE_LENGTH} characters')
        item = add_feed_item(draft, live_feed.ITEM_MESSAGE, message)
        return jsonify(live_feed.serialize_item(item)), 201

    @app.route('/api/tournament-drafts/<int:tid>/td-message', methods=['POST'])
    def api_td_message(tid):
        require_permission('feed.moderate')
        draft = get_open_draft(tid)
        message = (json_body().get('message_text') or '').strip()
        if not message:
            return api_error('Message cannot be empty')
        if len(message) > live_feed.MAX_MESSAGE_LENGTH:
            return api_error(f'Message cannot exceed {live_feed.MAX_MESSAGE_LENGTH} characters')
        item = add_feed_item(draft, live_feed.ITEM_TD_MESSAGE, message)
        log_audit(tid, 'td_message', 'feed', new={'message_text': message})
        return jsonify(live_feed.serialize_item(item)), 201

    @app.route('/api/tournament-drafts/<int:tid>/feed/photo', methods=['POST'])
    def api_feed_photo(tid):
        require_permission('feed.moderate')
        draft = get_open_draft(tid)
        caption = (request.form.get('caption') or '').strip()
        if len(caption) > live_feed.MAX_MESSAGE_LENGTH:
            return api_error(f'Caption cannot exceed {live_feed.MAX_MESSAGE_LENGTH} characters')
        filename = sanitize_image_upload(request.files.get('photo'), prefix='feed')
        if not filename:
            return api_error('Image could not be processed. Please upload a different picture.')
        item = add_feed_item(draft, live_feed.ITEM_PHOTO, caption or None, photo_path=filename)
        log_audit(tid, 'feed_photo', 'feed', new={'photo_path': filename, 'caption': caption})
        return jsonify(live_feed.serialize_item(item)), 201

    @app.route('/api/tournament-drafts/<int:tid>/feed/<int:item_id>', methods=['DELETE'])
    def api_feed_delete(tid, item_id):
        require_permission('feed.moderate')
        draft = get_draft(tid)
        item = db.session.get(FeedItem, item_id)
        if not item or item.tournament_draft_id != draft.id:
            return api_error('Feed item not found', 404)
        if item.item_type not in live_feed.DELETABLE_TYPES:
            return api_error('Only messages can be deleted')
        previous = live_feed.serialize_item(item)
        db.session.delete(item)
        db.session.commit()
        log_audit(tid, 'feed_message_deleted', 'feed', previous=previous)
        publish(tid, FEED_DELETED, {'id': item_id})
        return jsonify(success=True)

    @app.route('/api/tournament-drafts/<int:tid>/feed/<item_id>/reactions', methods=['GET', 'POST'])
    def api_reactions(tid, item_id):
        draft = get_draft(tid)
        if not feed_item_exists(draft, item_id):
            return api_error('Feed item not found', 404)
        if request.method == 'GET':
            user_id = current_user.id if current_user.is_authenticated else None
            return jsonify(
                reactions=live_feed.reaction_totals(db.session, tid, [item_id])[item_id],
                userReactions=live_feed.user_reactions(db.session, tid, user_id, [item_id])[item_id],
            )

        if not current_user.is_authenticated:
            return api_error('Authentication required', 401)
        require_permission('feed.post')
        data = json_body()
        try:
            result = live_feed.add_reaction(db.session, tid, item_id, current_user.id,
                                            data.get('reaction_type'), data.get('count', 1))
        except live_feed.ReactionLimitError as exc:
            return api_error(str(exc), balance=exc.balance)
        except ValueError as exc:
            return api_error(str(exc))
        publish(tid, REACTIONS_UPDATED, {'feed_item_id': item_id, 'reactions': result['reactions']})
        return jsonify(result)

    @app.route('/api/tournament-drafts/<int:tid>/feed/<item_id>/reactions/details')
    def api_reaction_details(tid, item_id):
        draft = get_draft(tid)
        if not feed_item_exists(draft, item_id):
            return api_error('Feed item not found', 404)
        return jsonify(live_feed.reaction_details(db.session, tid, item_id))

    @app.route('/api/tournament-drafts/<int:tid>/reactions/balance')
    @login_required
    def api_reaction_balance(tid):
        get_draft(tid)
        return jsonify(balance=live_feed.reaction_balance(db.session, tid, current_user.id),
                       maxPerSuit=live_feed.MAX_PER_SUIT)

    @app.route('/api/tournaments/<int:tid>/stream')
    def api_stream(tid):
        get_draft(tid)
        return Response(
            stream_with_context(broadcaster.stream(tid)),
            mimetype='text/event-stream',
            headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
        )

    @app.route('/api/gameview/<token>')
    def api_gameview(token):
        draft = draft_by_token(token, open_only=False)
        return jsonify(live_feed.build_gameview(draft, db.session))

    # ---------- Statistics ----------
    @app.route('/api/rankings/quarterly')
    def api_quarterly():
        default_q, default_year = rankings.current_quarter()
        quarter = parse_int(request.args.get('quarter'), default_q)
        year = parse_int(request.args.get('year'), default_year)
        try:
            start, end = rankings.quarter_date_range(quarter, year)
        except ValueError as exc:
            return api_error(str(exc))
        payload = rankings.quarterly_rankings(db.session, start, end, app.config['QUALIFYING_SPOTS'])
        payload.update(quarter=quarter, year=year)
        return jsonify(payload)

    @app.route('/api/rankings/monthly')
    def api_monthly():
        month = request.args.get('currentMonth')
        day = date.today()
        if month:
            day = parse_date(f'{month}-01' if len(month) == 7 else month)
            if not day:
                return api_error('currentMonth must look like YYYY-MM')
        start, end = rankings.month_date_range(day)
        return jsonify(rankings.monthly_rankings(db.session, start, end))

    @app.route('/api/players/<uid>/stats')
    def api_player_stats(uid):
        start = parse_date(request.args.get('startDate'))
        end = parse_date(request.args.get('endDate'))
        stats = rankings.player_stats(db.session, uid, start, end)
        if stats is None:
            return api_error('Player not found', 404)
        return jsonify(stats)

    @app.route('/api/players/<uid>/knockouts')
    def api_player_knockouts(uid):
        return jsonify(rankings.player_knockouts(db.session, uid))

    @app.route('/api/venues')
    def api_venues():
        return jsonify(rankings.venue_list(db.session))

    @app.route('/api/venues/<venue>/stats')
    def api_venue_stats(venue):
        stats = rankings.venue_stats(db.session, venue)
        if stats is None:
            return api_error('Venue not found', 404)
        return jsonify(stats)

    @app.route('/api/games/recent')
    def api_recent_games():
        limit = max(1, min(parse_int(request.args.get('limit'), 10), 50))
        return jsonify(rankings.recent_games(db.session, limit))

    @app.route('/api/games/<game_uid>')
    def api_game(game_uid):
        results = rankings.game_results(db.session, game_uid)
        if not results:
            return api_error('Game not found', 404)
        return jsonify(game_uid=game_uid, file_name=results[0]['file_name'],
                       venue=results[0]['venue'], game_date=results[0]['game_date'], players=results)

    # ---------- Audit log ----------
    @app.route('/api/admin/audit-logs')
    def api_audit_logs():
        require_admin()
        query = db.session.query(AuditLog)
        tid = parse_int(request.args.get('tournament_id'))
        if tid is not None:
            query = query.filter_by(tournament_id=tid)
        category = request.args.get('category')
        if category:
            query = query.filter_by(action_category=category)
        total = query.count()
        limit = max(1, min(parse_int(request.args.get('limit'), 100), 500))
        offset = max(0, parse_int(request.args.get('offset'), 0))
        logs = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit).all()
        return jsonify(total=total, logs=[l.to_dict() for l in logs])

    @app.route('/api/admin/audit-logs/stats')
    def api_audit_stats():
        require_admin()
        query = db.session.query(AuditLog.action_category, AuditLog.action_type, func.count(AuditLog.id))
        tid = parse_int(request.args.get('tournament_id'))
        if tid is not None:
            query = query.filter(AuditLog.tournament_id == tid)
        by_category = {}
        by_type = {}
        total = 0
        for category, action_type, count in query.group_by(AuditLog.action_category, AuditLog.action_type):
            by_category[category] = by_category.get(category, 0) + count
            by_type[action_type] = count
            total += count
        return jsonify(total=total, byCategory=by_category, byActionType=by_type)

    @app.route('/api/admin/audit-logs/<int:log_id>')
    def api_audit_log(log_id):
        require_admin()
        log = db.session.get(AuditLog, log_id)
        if not log:
            return api_error('Audit log not found', 404)
        return jsonify(log.to_dict())

    @app.route('/admin/logs')
    def site_logs():
        require_admin()
        log_site('view_site_logs', 'success')
        logs = db.session.query(SiteLog).order_by(SiteLog.timestamp.desc()).limit(500).all()
        for l in logs:
            l.user = db.session.get(User, l.user_id) if l.user_id else None
        return render_template('admin/site_logs.html', logs=logs)

    # ---------- Pages ----------
    @app.route('/t/<int:tid>')
    def view_draft(tid):
        require_permission('tournaments.manage')
        draft = get_draft(tid)
        return render_template('draft.html', draft=draft, validation=validation_payload(draft),
                               checkin_link=checkin_url(draft.check_in_token) if draft.check_in_token else None)

    @app.route('/rankings')
    def rankings_page():
        quarter, year = rankings.current_quarter()
        quarter = parse_int(request.args.get('quarter'), quarter)
        year = parse_int(request.args.get('year'), year)
        try:
            start, end = rankings.quarter_date_range(quarter, year)
        except ValueError:
            abort(400)
        standings = rankings.quarterly_rankings(db.session, start, end, app.config['QUALIFYING_SPOTS'])
        return render_template('rankings.html', standings=standings, quarter=quarter, year=year)

    return app
