import os

wsgi_app = "config.wsgi:application"


def cpu():
    return max(1, (os.cpu_count() or 1))

# Processes (workers)
workers = min(max(2, cpu() * 2), 8)

# Threads per worker: gateway calls and retry backoff block only their own thread
worker_class = "gthread"
threads = int(os.getenv("GTHREADS", "4"))

# Timeouts: above the 30s gateway create timeout plus backoff
timeout = int(os.getenv("GUNI_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNI_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNI_KEEPALIVE", "5"))

# Robustness
preload_app = True
max_requests = int(os.getenv("GUNI_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("GUNI_MAX_REQUESTS_JITTER", "200"))

# Access/error logs to stdout; application records are JSON (config.settings.LOGGING)
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNI_LOGLEVEL", "info")
