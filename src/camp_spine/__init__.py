"""camp-spine: camp-session ingestion and notification pipeline.

Turns family-submitted camp websites into scrape sources, runs and
supervises scrape jobs, records availability snapshots, notifies
subscribed families of changes, reports on pipeline health, and drives
durable multi-day outbound sequences.
"""

__version__ = "0.1.0"
