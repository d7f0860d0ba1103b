from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import logging
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    level = getattr(logging, str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    flask_app.logger.setLevel(level)
    logging.getLogger('planning_poker').setLevel(level)

    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []
    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from planning_poker.services.poker.registry import SessionRegistry
    from planning_poker.services.poker.housekeeping import IdleSessionReaper

    registry = SessionRegistry(min_players=int(flask_app.config.get('MIN_PLAYERS', 2)))
    reaper = IdleSessionReaper(
        registry,
        grace_sec=float(flask_app.config.get('SESSION_IDLE_GRACE_SEC', 30)),
        start_task=None if flask_app.config.get('TESTING') else socketio.start_background_task,
        sleep=socketio.sleep,
    )
    flask_app.extensions['session_registry'] = registry
    flask_app.extensions['session_reaper'] = reaper

    from planning_poker.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    from planning_poker.api.snapshots import snapshots
    flask_app.register_blueprint(snapshots, url_prefix='/api/snapshots')

    @flask_app.route('/api/health')
    def health():
        return jsonify({'status': 'ok', 'sessions': len(registry)})

    from planning_poker.socketio_events import register_socketio_handlers
    register_socketio_handlers(registry, reaper, testing=flask_app.config.get('TESTING', False))

    from planning_poker import models  # noqa: F401
    with flask_app.app_context():
        db.create_all()

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the snapshot tables."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('clean-snapshots')
    @click.option('--days', type=int, default=None, help='Remove saved snapshots older than this many days.')
    def clean_snapshots_command(days):
        """Deletes saved sessions and exports past the retention window."""
        from planning_poker.services import store
        if days is None:
            days = int(flask_app.config.get('SNAPSHOT_RETENTION_DAYS', 30))
        with flask_app.app_context():
            cleaned = store.clean_old_snapshots(days)
            if not cleaned.ok:
                raise click.ClickException(cleaned.error.message)
            print(f'Removed {cleaned.value} snapshot(s) older than {days} day(s).')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(clean_snapshots_command)

    return flask_app
