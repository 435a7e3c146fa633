# Gunicorn configuration file
#
#   gunicorn -c gunicorn_config.py "syncserver:create_app()"
import os

# Server socket
bind = f"0.0.0.0:{os.environ.get('PORT', '5000')}"
backlog = 2048

# Worker processes
# One worker only: each worker starts its own sync scheduler, and iFood
# actions/acknowledgements must not be issued twice for the same merchant.
# Gevent green threads keep long-lived SSE streams (/api/events) from
# blocking other requests.
workers = 1
worker_class = 'gevent'
worker_connections = 1000
timeout = 60
keepalive = 2

# Logging
accesslog = '-'  # Log to stdout
errorlog = '-'   # Log to stderr
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()

# Process naming
proc_name = 'ifood-order-sync'

# Server mechanics
daemon = False
pidfile = None
umask = 0
user = None
group = None
tmp_upload_dir = None
