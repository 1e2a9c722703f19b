import os

from .constants import ROOM_MAX_AGE_SEC, SWEEP_INTERVAL_SEC


class Config:
    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', '8080'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE') or None
    # Rooms older than this are closed by the sweeper regardless of activity (seconds)
    ROOM_MAX_AGE_SEC = int(os.environ.get('ROOM_MAX_AGE_SEC', str(ROOM_MAX_AGE_SEC)))
    SWEEP_INTERVAL_SEC = float(os.environ.get('SWEEP_INTERVAL_SEC', str(SWEEP_INTERVAL_SEC)))
    # Comma separated list; "*" allows every origin
    CORS_ALLOW_ORIGINS = [
        origin.strip()
        for origin in os.environ.get('CORS_ALLOW_ORIGINS', '*').split(',')
        if origin.strip()
    ]
