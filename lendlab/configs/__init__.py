#!/usr/bin/env python

"""
    Configurations for LendLab

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import os


# Determine environment
TESTING = os.getenv("TESTING", "false").lower() == "true"

# API server configuration
HOST = os.environ.get('LENDLAB_HOST', 'localhost')
PORT = int(os.environ.get('LENDLAB_PORT', 8080))
WORKERS = int(os.environ.get('LENDLAB_WORKERS', 1))
DEBUG = bool(int(os.environ.get('LENDLAB_DEBUG', 0)))
LOG_LEVEL = os.environ.get('LENDLAB_LOG_LEVEL', 'info')
SSL_CRT = os.environ.get('LENDLAB_SSL_CRT')
SSL_KEY = os.environ.get('LENDLAB_SSL_KEY')

# Signing key for session tokens
SEED = os.environ.get('LENDLAB_SEED', 'lendlab-testing-seed' if TESTING else None)

OPTIONS = {
    'host': HOST,
    'port': PORT,
    'log_level': LOG_LEVEL,
    'reload': DEBUG,
    'workers': WORKERS,
}
if SSL_CRT and SSL_KEY:
    OPTIONS['ssl_keyfile'] = SSL_KEY
    OPTIONS['ssl_certfile'] = SSL_CRT

DB_CONFIG = {
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASSWORD'),
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', '5432')),
    'dbname': os.environ.get('DB_NAME', 'lendlab'),
}

# Database configuration
DB_URI = (
    "sqlite:///:memory:" if TESTING else
    'postgresql+psycopg2://{user}:{password}@{host}:{port}/{dbname}'.format(**DB_CONFIG)
)

# MinIO / S3 configuration for data request artifacts
S3_CONFIG = {
    'endpoint': os.environ.get('S3_ENDPOINT'),
    'access_key': os.environ.get('S3_ACCESS_KEY'),
    'secret_key': os.environ.get('S3_SECRET_KEY'),
    'secure': os.environ.get('S3_SECURE', 'false').lower() == 'true',
    'bucket': os.environ.get('S3_DATA_BUCKET', 'data-requests'),
}

__all__ = ['HOST', 'PORT', 'DEBUG', 'LOG_LEVEL', 'OPTIONS', 'SEED', 'DB_URI', 'DB_CONFIG', 'S3_CONFIG', 'TESTING']
