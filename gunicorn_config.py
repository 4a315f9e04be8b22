"""
Gunicorn config. Starts the proximity cache sweepers in each worker
process (post_fork) and stops them when the worker exits, so no sweeper
thread outlives its worker.

when_ready hook runs a post-deploy smoke test against localhost once the
server is accepting connections.
"""

import logging
import os
import threading

# A nearby lookup can block ~12s per Overpass mirror.
workers = int(os.environ.get("WEB_CONCURRENCY", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "8"))
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "90"))
bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"


def when_ready(server):
    """Run smoke test in a background thread once gunicorn is listening."""
    port = os.environ.get("PORT", "8000")
    base_url = f"http://127.0.0.1:{port}"

    def _run_smoke():
        import time
        time.sleep(2)  # brief grace period for workers to finish forking
        logger = logging.getLogger("gunicorn.error")
        try:
            from smoke_test import run_tests
            logger.info("Post-deploy smoke test starting against %s", base_url)
            ok = run_tests(base_url)
            if ok:
                logger.info("Post-deploy smoke test PASSED")
            else:
                logger.error("Post-deploy smoke test FAILED")
        except Exception:
            logger.exception("Post-deploy smoke test crashed")

    t = threading.Thread(target=_run_smoke, daemon=True)
    t.start()


def post_fork(server, worker):
    """Start the cache sweepers in this gunicorn worker process."""
    try:
        from app import proximity
        proximity.start()
    except Exception as e:
        logging.getLogger(__name__).exception("Failed to start cache sweepers: %s", e)


def worker_exit(server, worker):
    """Stop the cache sweepers before the worker process goes away."""
    try:
        from app import proximity
        proximity.shutdown()
    except Exception as e:
        logging.getLogger(__name__).exception("Failed to stop cache sweepers: %s", e)
