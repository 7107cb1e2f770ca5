from slowapi import Limiter
from slowapi.util import get_remote_address

from backend.core import config


def build_limiter(default_limit: str | None) -> Limiter:
    # In-process storage: limits are per worker.
    return Limiter(
        key_func=get_remote_address,
        storage_uri='memory://',
        default_limits=[default_limit] if default_limit else [],
    )


limiter = build_limiter(config.RATE_LIMIT_DEFAULT if config.RATE_LIMIT_ENABLED else None)
