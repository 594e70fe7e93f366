"""
Gunicorn configuration for AttestGate production deployment.

Usage:
    gunicorn attestgate.main:app -c gunicorn.conf.py
"""

import multiprocessing
import os

# Bind to all interfaces on port 8000
bind = os.getenv("BIND", "0.0.0.0:8000")

# Worker processes: CPU cores * 2 + 1 (Gunicorn recommendation)
workers = int(os.getenv("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))

# Use Uvicorn's ASGI worker for FastAPI
worker_class = "uvicorn.workers.UvicornWorker"

# Request timeout (seconds). Advances wait at most ADVANCE_LOCK_TIMEOUT + EVALUATION_TIMEOUT.
timeout = 60

# Keep-alive connections (seconds)
keepalive = 5

# Distroless images have no writable /tmp unless one is mounted
worker_tmp_dir = "/dev/shm"

# Logging
accesslog = "-"  # stdout
errorlog = "-"   # stderr
loglevel = "info"
