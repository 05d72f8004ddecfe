from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
from config import Config

socketio = SocketIO(async_mode=None)


def create_app(config_class=Config, timers=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS', [])

    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # One store per app: rooms, sessions, pending answers and their timers
    from tunequiz.services.timers import BackgroundTimers
    from tunequiz.store import GameStore
    if timers is None:
        timers = BackgroundTimers(
            socketio,
            logger=flask_app.logger,
            poll_interval=float(flask_app.config.get('TIMER_POLL_SEC', 1.0)),
        )
    store = GameStore(timers, config=flask_app.config, logger=flask_app.logger)
    flask_app.extensions['tunequiz'] = store

    # Import and register blueprints here
    from tunequiz.main import main
    flask_app.register_blueprint(main)

    from tunequiz.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    # Register Socket.IO event handlers and the timer-driven emitters
    from tunequiz.socketio_events import bind_store_events, register_socketio_handlers
    register_socketio_handlers()
    bind_store_events(store)

    return flask_app
