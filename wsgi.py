"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    gunicorn -k eventlet -w 1 wsgi:app     # Socket.IO needs an async worker
    python wsgi.py                          # local dev server with Socket.IO
"""

from auditcapa import create_app
from auditcapa.services.realtime import socketio

app = create_app()

if __name__ == "__main__":
    socketio.run(app, debug=app.debug)
