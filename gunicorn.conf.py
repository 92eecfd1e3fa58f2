"""Gunicorn production configuration for the import/export API."""
import multiprocessing
import os

bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")
workers = int(os.getenv("GUNICORN_WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
chdir = "backend"
# Synchronous imports of up to IMPORT_BACKGROUND_THRESHOLD rows run inside the request.
timeout = int(os.getenv("GUNICORN_TIMEOUT", 300))
graceful_timeout = 30
keepalive = 5
max_requests = 1000
max_requests_jitter = 100
# Each worker opens its own SQLAlchemy pool after fork.
preload_app = False
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
