"""
Database schema for studycore as a SQL string constant, kept apart from the
connection and operation logic.

Timestamps are stored as naive UTC ``TIMESTAMP`` values; the marshalling
layer re-attaches UTC on read.
"""

DB_SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS collections (
        collection_id VARCHAR PRIMARY KEY,
        title VARCHAR NOT NULL,
        mode VARCHAR NOT NULL,
        total_units INTEGER NOT NULL CHECK (total_units >= 1),
        chunk_size INTEGER NOT NULL DEFAULT 1 CHECK (chunk_size >= 1),
        priority VARCHAR NOT NULL DEFAULT 'Normal',
        previous_collection_id VARCHAR,
        target_date DATE
    );

    CREATE TABLE IF NOT EXISTS items (
        collection_id VARCHAR NOT NULL,
        ordinal INTEGER NOT NULL CHECK (ordinal >= 1),
        state VARCHAR NOT NULL,
        stability DOUBLE NOT NULL,
        difficulty DOUBLE NOT NULL,
        elapsed_days INTEGER NOT NULL,
        scheduled_days INTEGER NOT NULL,
        learning_step INTEGER NOT NULL DEFAULT 0,
        repetition_count INTEGER NOT NULL,
        lapse_count INTEGER NOT NULL,
        due TIMESTAMP NOT NULL,
        last_reviewed_at TIMESTAMP,
        PRIMARY KEY (collection_id, ordinal)
    );

    CREATE TABLE IF NOT EXISTS ledger (
        entry_date DATE PRIMARY KEY,
        earned_reward INTEGER NOT NULL DEFAULT 0,
        target_reward INTEGER NOT NULL,
        balance INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS study_state (
        state_id INTEGER PRIMARY KEY CHECK (state_id = 1),
        last_rollover_date DATE,
        daily_target_reward INTEGER NOT NULL
    );
"""
