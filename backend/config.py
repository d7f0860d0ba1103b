import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///planning_poker.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Origins allowed to open sockets / call the API (comma separated)
    CORS_ORIGINS = [
        o.strip() for o in os.environ.get(
            'CORS_ORIGINS',
            'http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173',
        ).split(',') if o.strip()
    ]
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Minimum participants (facilitator included) before a session can start
    MIN_PLAYERS = int(os.environ.get('MIN_PLAYERS', '2'))
    # How long a session with no connected sockets survives before eviction (seconds). 0 evicts at once.
    SESSION_IDLE_GRACE_SEC = int(os.environ.get('SESSION_IDLE_GRACE_SEC', '30'))
    # Saved snapshots older than this are removed by `flask clean-snapshots`
    SNAPSHOT_RETENTION_DAYS = int(os.environ.get('SNAPSHOT_RETENTION_DAYS', '30'))
