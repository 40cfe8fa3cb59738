# app/gunicorn_conf.py
import os
from app.core.config import settings

# Gunicorn config variables
workers = settings.WORKERS
worker_class = "uvicorn.workers.UvicornWorker"

# Bind to 0.0.0.0 to be accessible from outside the container
host = os.getenv("CHAT_SERVICE_HOST", "0.0.0.0")
port = os.getenv("CHAT_SERVICE_PORT", str(settings.PORT))
bind = f"{host}:{port}"

# Chat streams stay open for minutes; heartbeats keep proxies from cutting them
timeout = int(os.getenv("CHAT_SERVICE_GUNICORN_TIMEOUT", "300"))
graceful_timeout = int(os.getenv("CHAT_SERVICE_GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = 75

print("--- Gunicorn Configuration ---")
print(f"Workers: {workers}")
print(f"Worker Class: {worker_class}")
print(f"Bind: {bind}")
print(f"Timeout: {timeout}")
print("----------------------------")
