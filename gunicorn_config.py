"""
Gunicorn configuration for domain-mask production deployment
"""
import multiprocessing
import os

# Server socket
bind = f"0.0.0.0:{os.environ.get('PORT', '8787')}"
backlog = 2048

# Worker processes
# Masking is I/O-bound (origin fetch + streamed rewrite), so use gevent workers;
# each one serves many requests, each request with its own pipeline state
workers = multiprocessing.cpu_count() + 1
worker_class = 'gevent'
worker_connections = 1000  # Max concurrent connections per worker
timeout = 60
keepalive = 5

# Logging
accesslog = '-'  # Log to stdout
errorlog = '-'   # Log to stderr
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = 'domain-mask'

# Server mechanics
daemon = False
pidfile = None
umask = 0
user = None
group = None
tmp_upload_dir = None

# TLS is terminated in front of the mask (nginx / load balancer)
keyfile = None
certfile = None
