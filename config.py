import os
from datetime import timedelta

class Config:
    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///proctorlens.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # MySQL Connection Pool Settings (Fix "Lost connection" errors)
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'pool_recycle': 3600,  # Recycle connections after 1 hour
        'pool_pre_ping': True,  # Verify connections before using
        'max_overflow': 20,
        'pool_timeout': 30,
        'echo': False
    }

    # Redis Configuration (per-attempt locks + listing cache)
    REDIS_ENABLED = os.getenv('REDIS_ENABLED', 'True').lower() == 'true'
    REDIS_HOST = os.getenv('REDIS_HOST', 'redis')
    REDIS_PORT = int(os.getenv('REDIS_PORT', 6379))
    REDIS_DB = int(os.getenv('REDIS_DB', 0))

    # JWT - Hybrid Security Approach (tokens are issued by the identity service)
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', 'your-secret-key-change-in-production')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(days=1)
    JWT_TOKEN_LOCATION = ['headers']
    JWT_HEADER_NAME = 'Authorization'
    JWT_HEADER_TYPE = 'Bearer'

    # Socket.IO
    SOCKETIO_CORS_ORIGINS = os.getenv('SOCKETIO_CORS_ORIGINS', '*')
    SOCKETIO_ASYNC_MODE = os.getenv('SOCKETIO_ASYNC_MODE', 'threading')

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Request size (snapshots are low-res JPEG data URLs)
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024  # 2MB max request body

    # Proctoring
    PROCTORING_SNAPSHOT_CAPACITY = int(os.getenv('PROCTORING_SNAPSHOT_CAPACITY', 60))  # every 30s for 30min
    PROCTORING_MAX_SNAPSHOT_BYTES = int(os.getenv('PROCTORING_MAX_SNAPSHOT_BYTES', 256 * 1024))
    PROCTORING_HEATMAP_BUCKETS = int(os.getenv('PROCTORING_HEATMAP_BUCKETS', 60))  # 12 x 5 grid
    PROCTORING_LOCK_TIMEOUT = float(os.getenv('PROCTORING_LOCK_TIMEOUT', 10))
    PROCTORING_LOCK_WAIT = float(os.getenv('PROCTORING_LOCK_WAIT', 5))
    PROCTORING_LIST_CACHE_TTL = int(os.getenv('PROCTORING_LIST_CACHE_TTL', 5))
    PROCTORING_MONITOR_POLL_SECONDS = 15  # advertised to monitoring dashboards

class DevelopmentConfig(Config):
    DEBUG = True
    REDIS_ENABLED = False

class ProductionConfig(Config):
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL')
