"""NiceGUI venue screen for a running tournament.

Meant for the TV at the venue: players remaining, the knockout list and
the director's latest message, refreshed every few seconds.  It reads the
same database as the Flask app and shows the payload served at
``/api/gameview/<token>``.
"""

from nicegui import ui
from .app import create_app, db
from .feed import build_gameview
from .models import TournamentDraft

REFRESH_SECONDS = 5

# Reuse the existing Flask application and database configuration
flask_app = create_app()


def load_gameview(token):
    with flask_app.app_context():
        draft = db.session.query(TournamentDraft).filter_by(check_in_token=token).first()
        if not draft:
            return None
        return build_gameview(draft, db.session)


@ui.page('/tvscreen/{token}')
def tv_screen(token: str) -> None:
    """Full-screen tournament board, polled from the database."""
    ui.query('body').classes('bg-gray-900 text-white')

    @ui.refreshable
    def board() -> None:
        view = load_gameview(token)
        if view is None:
            ui.label('Tournament not found').classes('text-3xl m-8')
            return
        info = view['tournament']
        with ui.row().classes('w-full items-baseline justify-between p-6'):
            ui.label(info['venue']).classes('text-5xl font-bold')
            ui.label(f"{info['tournament_date']} {info['tournament_time'] or ''}").classes('text-2xl')
        with ui.row().classes('w-full p-6 gap-12'):
            with ui.column():
                ui.label('Players remaining').classes('text-2xl text-gray-400')
                ui.label(f"{view['playersRemaining']} / {view['totalPlayers']}").classes('text-7xl font-bold')
                for name in view['remaining']:
                    ui.label(name).classes('text-xl')
            with ui.column():
                ui.label('Knockouts').classes('text-2xl text-gray-400')
                for ko in view['knockouts'][:12]:
                    line = f"#{ko['ko_position']} {ko['name']}"
                    if ko['hitman_name']:
                        line += f" by {ko['hitman_name']}"
                    ui.label(line).classes('text-xl')
        message = view['latestTdMessage']
        if message:
            with ui.card().classes('m-6 p-6 bg-yellow-300 text-black'):
                ui.label('From the director').classes('text-lg')
                ui.label(message['message_text']).classes('text-3xl')

    board()
    ui.timer(REFRESH_SECONDS, board.refresh)


def run() -> None:
    """Start the TV screen server."""
    ui.run(title='Poker League', port=8081)


if __name__ in {'__main__', '__mp_main__'}:
    run()
