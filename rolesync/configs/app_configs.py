import os

#####
# Directory store
#####
POSTGRES_USER = os.environ.get("POSTGRES_USER") or "postgres"
POSTGRES_PASSWORD = os.environ.get("POSTGRES_PASSWORD") or "password"
POSTGRES_HOST = os.environ.get("POSTGRES_HOST") or ""
POSTGRES_PORT = os.environ.get("POSTGRES_PORT") or "5432"
POSTGRES_DB = os.environ.get("POSTGRES_DB") or "postgres"

# Explicit URL wins; otherwise Postgres when a host is configured, sqlite for
# local runs.
SQLALCHEMY_DATABASE_URL = os.environ.get("SQLALCHEMY_DATABASE_URL") or (
    f"postgresql+psycopg2://{POSTGRES_USER}:{POSTGRES_PASSWORD}"
    f"@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}"
    if POSTGRES_HOST
    else "sqlite:///./rolesync.db"
)
POSTGRES_POOL_SIZE = int(os.environ.get("POSTGRES_POOL_SIZE") or 20)
POSTGRES_POOL_PRE_PING = os.environ.get("POSTGRES_POOL_PRE_PING", "").lower() == "true"

#####
# Redis
#####
REDIS_HOST = os.environ.get("REDIS_HOST") or "localhost"
REDIS_PORT = int(os.environ.get("REDIS_PORT") or 6379)
REDIS_DB_NUMBER = int(os.environ.get("REDIS_DB_NUMBER") or 0)
REDIS_PASSWORD = os.environ.get("REDIS_PASSWORD") or ""
REDIS_SSL = os.environ.get("REDIS_SSL", "").lower() == "true"

#####
# SCIM
#####
# Absolute base of the SCIM surface, used for member $ref and meta.location
SCIM_BASE_URL = (
    os.environ.get("SCIM_BASE_URL") or "http://localhost:8080/scim/v2"
).rstrip("/")

# Sliding window admission control, per scope
SCIM_RATE_LIMIT_MAX_REQUESTS = max(
    1, int(os.environ.get("SCIM_RATE_LIMIT_MAX_REQUESTS") or 200)
)
SCIM_RATE_LIMIT_WINDOW_SECONDS = max(
    1.0, float(os.environ.get("SCIM_RATE_LIMIT_WINDOW_SECONDS") or 60)
)
# "redis" shares counters across replicas, "memory" is per process
SCIM_RATE_LIMIT_BACKEND = (
    os.environ.get("SCIM_RATE_LIMIT_BACKEND") or "redis"
).lower()

SCIM_MAX_PAGE_SIZE = 200
SCIM_DEFAULT_PAGE_SIZE = 100

#####
# Logging
#####
LOG_LEVEL = os.environ.get("LOG_LEVEL") or "info"
