"""Configuration settings for the prepacking service."""

import os


def get_postgres_uri():
    """Get PostgreSQL connection URI from environment variables."""
    host = os.environ.get("DB_HOST", "localhost")
    port = 5433 if host == "localhost" else 5432
    password = os.environ.get("DB_PASSWORD", "prepacking_pass")
    user = os.environ.get("DB_USER", "prepacking_user")
    db_name = os.environ.get("DB_NAME", "prepacking_db")
    return f"postgresql://{user}:{password}@{host}:{port}/{db_name}"


def get_redis_host_and_port():
    """Get Redis connection details from environment variables."""
    host = os.environ.get("REDIS_HOST", "localhost")
    port = int(os.environ.get("REDIS_PORT", 6379))
    return dict(host=host, port=port)


def get_referencedata_url():
    """Base URL of the reference data service (orderables, lots, facilities...)."""
    return os.environ.get("REFERENCEDATA_URL", "http://localhost:8080")


def get_stockmanagement_url():
    """Base URL of the stock management service (the stock ledger)."""
    return os.environ.get("STOCKMANAGEMENT_URL", "http://localhost:8080")


def get_service_token():
    """Bearer token used for service-to-service calls."""
    return os.environ.get("SERVICE_TOKEN")


def get_http_timeout():
    """Per-call timeout in seconds for outbound HTTP requests."""
    return float(os.environ.get("HTTP_TIMEOUT", 30))


def get_http_retry_attempts():
    return int(os.environ.get("HTTP_RETRY_ATTEMPTS", 3))


def get_prepacking_reason_ids():
    """
    Stock adjustment reasons used to tag the two halves of a prepack.

    Returns:
        dict with ``debit`` and ``credit`` reason ids
    """
    return dict(
        debit=os.environ.get(
            "PREPACKING_DEBIT_REASON_ID", "b5c27da7-bdda-4790-925a-9484c5dfb594"
        ),
        credit=os.environ.get(
            "PREPACKING_CREDIT_REASON_ID", "9b4b653a-f319-4a1b-bb80-3d6b4dd6cc12"
        ),
    )


def get_jwt_secret():
    """Secret and algorithm used to verify incoming bearer tokens."""
    return dict(
        key=os.environ.get("JWT_SECRET", "changeme"),
        algorithm=os.environ.get("JWT_ALGORITHM", "HS256"),
    )


def get_extension_config():
    """
    Extension point overrides, e.g.
    ``PREPACKING_EXTENSIONS="FreeTextValidator=my_pkg.rules:StrictFreeText"``.

    Returns:
        dict mapping extension point id to a ``module:ClassName`` path
    """
    raw = os.environ.get("PREPACKING_EXTENSIONS", "")
    extensions = {}
    for entry in raw.split(","):
        if "=" not in entry:
            continue
        point_id, path = entry.split("=", 1)
        extensions[point_id.strip()] = path.strip()
    return extensions


def get_lock_timeouts():
    """Lock lifetime and acquire wait (seconds) for derived product creation."""
    return dict(
        timeout=float(os.environ.get("LOCK_TIMEOUT", 30)),
        blocking_timeout=float(os.environ.get("LOCK_BLOCKING_TIMEOUT", 10)),
    )
