"""
Cache utilities for Setlist Pick'em
Response caching for read endpoints and invalidation after scoring writes
"""

import functools

from flask import current_app, request

from setlist_pickem import cache


def make_cache_key(*args, **kwargs):
    """Generate a cache key from request path, query string and arguments"""
    path = request.path
    query = "_".join(f"{k}_{v}" for k, v in sorted(request.args.items()))
    args_str = "_".join(str(arg) for arg in args)
    kwargs_str = "_".join(f"{k}_{v}" for k, v in sorted(kwargs.items()))
    return f"{path}_{query}_{args_str}_{kwargs_str}".replace("/", "_")


def cached_route(timeout=300, key_prefix="view"):
    """
    Decorator for caching JSON route responses

    Args:
        timeout: Cache timeout in seconds (default 5 minutes)
        key_prefix: Prefix for cache key, also used for invalidation
    """

    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            cache_key = f"{key_prefix}_{make_cache_key(*args, **kwargs)}"

            result = cache.get(cache_key)
            if result is not None:
                current_app.logger.debug(f"Cache hit for key: {cache_key}")
                return result

            result = f(*args, **kwargs)
            # Only successful responses are cached
            status = result[1] if isinstance(result, tuple) else 200
            if status == 200:
                cache.set(cache_key, result, timeout=timeout)
                current_app.logger.debug(f"Cache set for key: {cache_key}")

            return result

        return wrapped

    return decorator


def invalidate_scoring_caches(reason):
    """
    Drop cached results and leaderboards after scores change.

    SimpleCache and Redis both lack cheap prefix deletes through
    Flask-Caching, so the whole cache is cleared.
    """
    try:
        cache.clear()
        current_app.logger.info(f"Cache cleared: {reason}")
    except Exception as e:
        # A stale cache must never fail a scoring pass
        current_app.logger.error(f"Failed to clear cache ({reason}): {e}")
