"""Request core: context, cache, rate limiting, errors and the executor."""
