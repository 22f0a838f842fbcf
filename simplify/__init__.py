"""
simplify - asynchronous translation job pipeline for structured content pages.

Pages are enqueued as jobs, a single background worker drains the queue and
translates eligible fields through an LLM provider, guarded by a spend budget
and a content cache.
"""

__version__ = "0.4.0"
