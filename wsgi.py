"""
WSGI entry point for Sim
"""
import eventlet

eventlet.monkey_patch()

from dotenv import load_dotenv  # noqa: E402

load_dotenv()

from sim.factory import create_app  # noqa: E402
from sim.realtime import socketio  # noqa: E402

app = create_app()

# Gunicorn/uWSGI compatibility
application = app

if __name__ == "__main__":
    cfg = app.config["APP_CONFIG"]
    socketio.run(app, host=cfg["APP_HOST"], port=cfg["APP_PORT"], debug=cfg["FLASK_DEBUG"])
