# gunicorn.conf.py
import multiprocessing, os

bind = f"0.0.0.0:{os.getenv('PORT','5000')}"
wsgi_app = "astro_edge.main:create_app()"
# I/O-bound upstream waits: few processes, several threads each.
# Each process holds its own EdgeCache.
workers = int(os.getenv("WEB_CONCURRENCY", max(2, multiprocessing.cpu_count() // 2)))
threads = int(os.getenv("GUNICORN_THREADS", "8"))
worker_class = "gthread"
timeout = 30       # upstream timeout is 12s; relay payloads can be large
graceful_timeout = 20
keepalive = 5
accesslog = "-"   # stdout
errorlog = "-"    # stderr
loglevel = os.getenv("LOGLEVEL", "info")

# add request id if present
access_log_format = (
    '%(h)s - "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" '
    'req_id:%({X-Request-ID}i)s cache:%({X-Cache}o)s rt:%(L)s'
)
