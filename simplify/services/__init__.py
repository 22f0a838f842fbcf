"""
Persistent services: budget ledger, translation cache, stats/report ledgers
and grouped page translation.
"""
