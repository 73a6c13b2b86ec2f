# use in gunicorn as: env/bin/gunicorn bucketproxy.api:app -c gunicorn.conf.py
# Every worker keeps its own namespace snapshot and checksum cache.

# Workers
workers = 2
worker_class = 'uvicorn.workers.UvicornWorker'

# Socket
bind = '0.0.0.0:8080'

# Logging
# loglevel = 'debug'
# accesslog = '/tmp/bucketproxy_access_log'
# errorlog =  '/tmp/bucketproxy_error_log'
