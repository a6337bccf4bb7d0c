"""
Service layer for the chess club engine.

Provides the cache, the quota circuit breaker, post-write task dispatch and
the ladder views built on top of the game ledger.
"""
