"""
Pipeline tables: table registry, DDL, and indexes.

Manifesto:
    Every concurrency guarantee the pipeline makes is enforced by the
    storage layer, not by an application-level check-then-write:

    - **Source dedup:** ``scrape_sources.domain`` is UNIQUE
    - **Notification dedup:** UNIQUE (family, session, change type, transition)
    - **One active sequence per subject:** partial UNIQUE index on
      ``sequence_runs(subject_id) WHERE status = 'active'``
    - **Step completion:** PRIMARY KEY (run_id, step_index)
    - **Outbound guard:** ``outbound_messages.dedup_key`` PRIMARY KEY

    Callers treat the resulting ``IntegrityError`` as "someone else won"
    and resolve to the canonical row.

Architecture:
    ::

        Table Registry (CORE_TABLES):
        ┌────────────────────────────────────────────────────────────┐
        │ organizations          → organizations                     │
        │ sources                → scrape_sources                    │
        │ sessions               → camp_sessions                     │
        │ jobs                   → scrape_jobs                       │
        │ requests               → camp_requests                     │
        │ snapshots              → availability_snapshots            │
        │ families               → families                          │
        │ subscriptions          → session_subscriptions             │
        │ notifications          → notification_records              │
        │ alerts                 → alerts                            │
        │ sequence_runs          → sequence_runs                     │
        │ sequence_steps         → sequence_step_records             │
        │ outbound_messages      → outbound_messages                 │
        │ city_overrides         → city_overrides                    │
        └────────────────────────────────────────────────────────────┘

    All timestamps are ISO-8601 UTC strings written by
    :func:`camp_spine.core.timestamps.to_iso8601`, so lexical order is
    chronological order.

Examples:
    >>> from camp_spine.core.schema import CORE_TABLES, create_core_tables
    >>> CORE_TABLES["sources"]
    'scrape_sources'
    >>> create_core_tables(conn)

Tags:
    schema, ddl, sqlite, constraints, camp-spine
"""

from __future__ import annotations

from camp_spine.core.protocols import Connection

CORE_TABLES = {
    "organizations": "organizations",
    "sources": "scrape_sources",
    "sessions": "camp_sessions",
    "jobs": "scrape_jobs",
    "requests": "camp_requests",
    "snapshots": "availability_snapshots",
    "families": "families",
    "subscriptions": "session_subscriptions",
    "notifications": "notification_records",
    "alerts": "alerts",
    "sequence_runs": "sequence_runs",
    "sequence_steps": "sequence_step_records",
    "outbound_messages": "outbound_messages",
    "city_overrides": "city_overrides",
}


CORE_DDL = {
    "organizations": """
        CREATE TABLE IF NOT EXISTS organizations (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            website TEXT,
            city_id TEXT,
            created_at TEXT NOT NULL
        )
    """,
    # =========================================================================
    # SCRAPE_SOURCES: one row per normalized provider domain.
    # Never deleted; mutated only for organization linkage and health.
    # =========================================================================
    "sources": """
        CREATE TABLE IF NOT EXISTS scrape_sources (
            id TEXT PRIMARY KEY,
            domain TEXT NOT NULL UNIQUE,        -- normalized hostname, dedup key
            name TEXT NOT NULL,
            url TEXT NOT NULL,
            city_id TEXT NOT NULL,
            organization_id TEXT REFERENCES organizations(id),
            requested_by TEXT,
            notes TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,

            -- Health bookkeeping
            scrape_frequency_hours INTEGER NOT NULL DEFAULT 24,
            consecutive_failures INTEGER NOT NULL DEFAULT 0,
            total_runs INTEGER NOT NULL DEFAULT 0,
            successful_runs INTEGER NOT NULL DEFAULT 0,
            last_scraped_at TEXT,
            last_success_at TEXT,
            last_failure_at TEXT,
            last_error TEXT,
            next_scheduled_at TEXT,

            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "sessions": """
        CREATE TABLE IF NOT EXISTS camp_sessions (
            id TEXT PRIMARY KEY,
            source_id TEXT NOT NULL REFERENCES scrape_sources(id),
            external_key TEXT NOT NULL,
            name TEXT NOT NULL,
            start_date TEXT NOT NULL,
            end_date TEXT NOT NULL,
            time_text TEXT,
            price_text TEXT,
            age_grade_text TEXT,
            registration_status TEXT,
            enrolled_count INTEGER,
            capacity INTEGER,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (source_id, external_key)
        )
    """,
    # =========================================================================
    # SCRAPE_JOBS: immutable once terminal (completed / failed / cancelled).
    # =========================================================================
    "jobs": """
        CREATE TABLE IF NOT EXISTS scrape_jobs (
            id TEXT PRIMARY KEY,
            source_id TEXT NOT NULL REFERENCES scrape_sources(id),
            status TEXT NOT NULL DEFAULT 'queued',
            triggered_by TEXT,
            sessions_found INTEGER,
            sessions_created INTEGER,
            sessions_updated INTEGER,
            error_message TEXT,
            created_at TEXT NOT NULL,
            started_at TEXT,
            completed_at TEXT
        )
    """,
    "requests": """
        CREATE TABLE IF NOT EXISTS camp_requests (
            id TEXT PRIMARY KEY,
            family_id TEXT,
            city_id TEXT NOT NULL,
            website_url TEXT,
            organization_name TEXT,
            camp_name TEXT,
            notes TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            scrape_source_id TEXT,
            organization_id TEXT,
            error_message TEXT,
            created_at TEXT NOT NULL,
            processed_at TEXT
        )
    """,
    # Append-only. Ordered per session by (recorded_at, id).
    "snapshots": """
        CREATE TABLE IF NOT EXISTS availability_snapshots (
            id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL REFERENCES camp_sessions(id),
            job_id TEXT,
            enrolled_count INTEGER NOT NULL,
            capacity INTEGER NOT NULL,
            spots_remaining INTEGER NOT NULL,
            registration_status TEXT NOT NULL,
            recorded_at TEXT NOT NULL
        )
    """,
    "families": """
        CREATE TABLE IF NOT EXISTS families (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL,
            display_name TEXT NOT NULL,
            city_id TEXT,
            plan TEXT NOT NULL DEFAULT 'free',
            alerts_enabled INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "subscriptions": """
        CREATE TABLE IF NOT EXISTS session_subscriptions (
            family_id TEXT NOT NULL REFERENCES families(id),
            session_id TEXT NOT NULL REFERENCES camp_sessions(id),
            child_name TEXT,
            created_at TEXT NOT NULL,
            PRIMARY KEY (family_id, session_id)
        )
    """,
    # =========================================================================
    # NOTIFICATION_RECORDS: dedup ledger for change notifications.
    # The transition id distinguishes open→close→open from a re-check.
    # =========================================================================
    "notifications": """
        CREATE TABLE IF NOT EXISTS notification_records (
            id TEXT PRIMARY KEY,
            family_id TEXT NOT NULL,
            session_id TEXT NOT NULL,
            change_type TEXT NOT NULL,
            transition_id TEXT NOT NULL,
            notified_at TEXT NOT NULL,
            provider_message_id TEXT,
            UNIQUE (family_id, session_id, change_type, transition_id)
        )
    """,
    "alerts": """
        CREATE TABLE IF NOT EXISTS alerts (
            id TEXT PRIMARY KEY,
            message TEXT NOT NULL,
            severity TEXT NOT NULL,
            alert_type TEXT NOT NULL,
            source_id TEXT,
            created_at TEXT NOT NULL,
            acknowledged_at TEXT,
            acknowledged_by TEXT
        )
    """,
    "sequence_runs": """
        CREATE TABLE IF NOT EXISTS sequence_runs (
            id TEXT PRIMARY KEY,
            subject_id TEXT NOT NULL,
            sequence_name TEXT NOT NULL,
            total_steps INTEGER NOT NULL,
            last_completed_step INTEGER NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'active',
            anchor TEXT NOT NULL DEFAULT 'previous',
            started_at TEXT NOT NULL,
            next_due_at TEXT,
            finished_at TEXT,
            last_error TEXT
        )
    """,
    # Durable completion record; step_index is 1-based.
    "sequence_steps": """
        CREATE TABLE IF NOT EXISTS sequence_step_records (
            run_id TEXT NOT NULL REFERENCES sequence_runs(id),
            step_index INTEGER NOT NULL,
            step_name TEXT NOT NULL,
            completed_at TEXT NOT NULL,
            PRIMARY KEY (run_id, step_index)
        )
    """,
    "outbound_messages": """
        CREATE TABLE IF NOT EXISTS outbound_messages (
            dedup_key TEXT PRIMARY KEY,
            recipient TEXT NOT NULL,
            template_id TEXT NOT NULL,
            dispatch_id TEXT,
            created_at TEXT NOT NULL
        )
    """,
    "city_overrides": """
        CREATE TABLE IF NOT EXISTS city_overrides (
            city_id TEXT PRIMARY KEY,
            patch_json TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
}


# sqlite3 executes one statement per call, so indexes are kept separate.
CORE_INDEXES = {
    "idx_jobs_source_status": (
        "CREATE INDEX IF NOT EXISTS idx_jobs_source_status "
        "ON scrape_jobs (source_id, status)"
    ),
    "idx_jobs_completed_at": (
        "CREATE INDEX IF NOT EXISTS idx_jobs_completed_at "
        "ON scrape_jobs (completed_at)"
    ),
    "idx_requests_status": (
        "CREATE INDEX IF NOT EXISTS idx_requests_status "
        "ON camp_requests (status)"
    ),
    "idx_snapshots_session_recorded": (
        "CREATE INDEX IF NOT EXISTS idx_snapshots_session_recorded "
        "ON availability_snapshots (session_id, recorded_at, id)"
    ),
    "idx_alerts_unacked": (
        "CREATE INDEX IF NOT EXISTS idx_alerts_unacked "
        "ON alerts (acknowledged_at, created_at)"
    ),
    "idx_sources_due": (
        "CREATE INDEX IF NOT EXISTS idx_sources_due "
        "ON scrape_sources (is_active, next_scheduled_at)"
    ),
    "uq_sequence_runs_active_subject": (
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_sequence_runs_active_subject "
        "ON sequence_runs (subject_id) WHERE status = 'active'"
    ),
    "idx_sequence_runs_due": (
        "CREATE INDEX IF NOT EXISTS idx_sequence_runs_due "
        "ON sequence_runs (status, next_due_at)"
    ),
}


def create_core_tables(conn: Connection) -> list[str]:
    """
    Create all pipeline tables and indexes.

    Safe to call multiple times (``IF NOT EXISTS``).  Returns the table
    names in creation order.
    """
    for ddl in CORE_DDL.values():
        conn.execute(ddl)
    for ddl in CORE_INDEXES.values():
        conn.execute(ddl)
    conn.commit()
    return list(CORE_TABLES.values())


__all__ = ["CORE_DDL", "CORE_INDEXES", "CORE_TABLES", "create_core_tables"]
