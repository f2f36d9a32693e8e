"""
Local startup script for the notification server.

Runs the FastAPI app, a Celery worker and Celery beat side by side. Beat
fires the periodic sweeps (due delivery, attendance reminders, cleanup),
the worker executes them, so all three are needed for deliveries to happen.
"""

import multiprocessing
import signal
import subprocess
import sys
import time
from pathlib import Path

# Add the parent directory to Python path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config.settings import settings
from app.utils.logging import get_logger

logger = get_logger()

PROJECT_ROOT = str(Path(__file__).parent.parent)

SERVICES = {
    "API": ["uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", "8000"],
    "Worker": ["celery", "-A", "app.celery", "worker", "--loglevel=info", "--pool=solo"],
    "Beat": ["celery", "-A", "app.celery", "beat", "--loglevel=info"],
}


def setup_signal_handlers():
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


def run_service(name: str, module_args: list):
    """Run one service as ``python -m <module_args>`` until it exits."""
    try:
        logger.info(f"Starting {name} process")
        subprocess.run(
            [sys.executable, "-m", *module_args], check=True, cwd=PROJECT_ROOT
        )
    except subprocess.CalledProcessError as e:
        logger.error(f"{name} process failed with return code {e.returncode}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info(f"{name} process interrupted")


def check_redis_connection() -> bool:
    """The broker must be reachable before the worker and beat can start."""
    import redis

    try:
        redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD or None,
            socket_connect_timeout=5,
        ).ping()
    except redis.RedisError as e:
        logger.error(f"Redis connection failed: {e}")
        return False

    logger.info("Redis connection successful")
    return True


def terminate_processes(processes):
    for process in processes:
        if process.is_alive():
            logger.info(f"Terminating {process.name} process")
            process.terminate()

    for process in processes:
        process.join(timeout=10)
        if process.is_alive():
            logger.warning(f"{process.name} did not terminate gracefully, force killing")
            process.kill()
            process.join()


def main():
    multiprocessing.freeze_support()
    setup_signal_handlers()

    logger.info(f"Starting {settings.NAME} (API + Celery worker + Celery beat)")

    if not check_redis_connection():
        logger.error("Cannot start services without Redis connection")
        sys.exit(1)

    processes = []
    try:
        for name, module_args in SERVICES.items():
            process = multiprocessing.Process(
                target=run_service, args=(name, module_args), name=name
            )
            process.start()
            processes.append(process)

        # Stop everything as soon as one service dies
        while all(process.is_alive() for process in processes):
            time.sleep(1)

        dead = [p.name for p in processes if not p.is_alive()]
        logger.error(f"Service(s) exited unexpectedly: {', '.join(dead)}")
    except KeyboardInterrupt:
        logger.info("Shutdown signal received")
    finally:
        terminate_processes(processes)
        logger.info("All services stopped")


if __name__ == "__main__":
    main()
