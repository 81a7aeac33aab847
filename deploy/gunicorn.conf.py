"""
Gunicorn configuration for the evaluation API.

    gunicorn -c deploy/gunicorn.conf.py thesis_eval.main:app
"""
import os
import multiprocessing

bind = os.environ.get("BIND", "0.0.0.0:8000")

workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 120
keepalive = 5

accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()

proc_name = "thesis-eval"

limit_request_line = 4094
limit_request_fields = 100
