import os

# Server socket
bind = f"127.0.0.1:{os.getenv('PORT', '3001')}"  # Match the Nginx proxy_pass setting
backlog = 2048

# Application factory
wsgi_app = "app:create_app()"

# Worker processes
# Sessions, results and issued promo codes live in process memory, so there
# must be exactly one worker; threads handle concurrent requests
workers = 1
worker_class = 'gthread'
threads = 8
timeout = 30
keepalive = 2

# Logging
accesslog = '-'
errorlog = '-'
loglevel = os.getenv('LOG_LEVEL', 'info').lower()

# Process naming
proc_name = 'freebet-quizbot'

# Server mechanics
daemon = False
pidfile = None
umask = 0
user = None
group = None
tmp_upload_dir = None


def post_worker_init(worker):
    # worker.wsgi is the Flask app returned by create_app()
    from app import start_bot
    start_bot(worker.wsgi)


def worker_exit(server, worker):
    from app import stop_bot
    stop_bot(worker.wsgi)
