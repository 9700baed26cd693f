# gunicorn.conf.py
# Gunicorn configuration file

import logging
import os

# Logging
accesslog = '-'  # Log to stdout
errorlog = '-'   # Log to stderr
loglevel = 'info'

# Worker configuration
workers = int(os.environ.get('GUNICORN_WORKERS', '2'))
worker_class = 'gthread'
threads = int(os.environ.get('GUNICORN_THREADS', '4'))
# Catalog lookups are bounded by MBS_TIMEOUT; leave room for a slow batch import
timeout = 120

# Server mechanics
daemon = False
pidfile = None
umask = 0
user = None
group = None
tmp_upload_dir = None

# Hooks
def post_worker_init(worker):
    """
    Called after a worker has been forked and initialized.
    Each worker owns its own connection pool, so the keepalive thread
    is started here.
    """
    logger = logging.getLogger(__name__)
    logger.info(f"=== Post-worker init hook called for worker PID {os.getpid()} ===")

    try:
        import db_utils
        db_utils.start_keepalive_thread()
    except Exception as e:
        logger.error(f"Error starting keepalive thread in gunicorn worker: {e}", exc_info=True)


def worker_exit(server, worker):
    """
    Called when a worker exits.
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Worker {worker.pid} exiting - closing database connections")

    try:
        import db_utils
        db_utils.stop_keepalive_thread()
        db_utils.close_connection_pool()
    except Exception as e:
        logger.error(f"Error closing database connections: {e}")
