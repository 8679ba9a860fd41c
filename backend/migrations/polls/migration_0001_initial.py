"""Initial schema for poll projections, selections, participation and points."""

from __future__ import annotations

from backend.database import Migration

# Weekly selection cap enforced by the store itself. Application code checks the
# same limit first but only this trigger closes the check-then-insert window.
SELECTION_CAP = 5


class Migration0001Initial(Migration):
    version = "0001_initial"

    def upgrade(self, cursor, driver: str) -> None:  # type: ignore[override]
        if driver == "postgres":
            statements = [
                """
                CREATE TABLE IF NOT EXISTS dao_polls (
                    id TEXT PRIMARY KEY,
                    onchain_id BIGINT UNIQUE,
                    chain_address TEXT,
                    chain_authority TEXT,
                    creator_wallet TEXT NOT NULL,
                    question TEXT NOT NULL,
                    options TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL DEFAULT 'nomination',
                    section TEXT NOT NULL DEFAULT 'nomination',
                    week_id TEXT NOT NULL,
                    selection_count INTEGER NOT NULL DEFAULT 0,
                    deadline DOUBLE PRECISION,
                    promoted_at DOUBLE PRECISION,
                    revealed_at DOUBLE PRECISION,
                    archived_at DOUBLE PRECISION,
                    vote_counts TEXT,
                    winner INTEGER,
                    create_tx_signature TEXT,
                    reveal_tx_signature TEXT,
                    created_at DOUBLE PRECISION NOT NULL,
                    updated_at DOUBLE PRECISION NOT NULL
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS selections (
                    id TEXT PRIMARY KEY,
                    poll_id TEXT NOT NULL REFERENCES dao_polls(id) ON DELETE CASCADE,
                    wallet TEXT NOT NULL,
                    week_id TEXT NOT NULL,
                    created_at DOUBLE PRECISION NOT NULL,
                    UNIQUE (poll_id, wallet, week_id)
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS vote_records (
                    id TEXT PRIMARY KEY,
                    poll_id BIGINT NOT NULL,
                    voter_wallet TEXT NOT NULL,
                    transaction_signature TEXT NOT NULL,
                    voted_at DOUBLE PRECISION NOT NULL,
                    UNIQUE (poll_id, voter_wallet)
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS point_transactions (
                    id BIGSERIAL PRIMARY KEY,
                    member_wallet TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    reason TEXT NOT NULL,
                    reference_id TEXT,
                    created_at DOUBLE PRECISION NOT NULL
                )
                """,
                f"""
                CREATE OR REPLACE FUNCTION enforce_selection_limit() RETURNS trigger AS $$
                BEGIN
                    PERFORM pg_advisory_xact_lock(hashtext(NEW.wallet || ':' || NEW.week_id));
                    IF (SELECT COUNT(*) FROM selections
                         WHERE wallet = NEW.wallet AND week_id = NEW.week_id) >= {SELECTION_CAP} THEN
                        RAISE EXCEPTION 'Selection limit reached' USING ERRCODE = 'check_violation';
                    END IF;
                    RETURN NEW;
                END;
                $$ LANGUAGE plpgsql
                """,
                """
                CREATE OR REPLACE FUNCTION adjust_selection_count() RETURNS trigger AS $$
                BEGIN
                    IF TG_OP = 'INSERT' THEN
                        UPDATE dao_polls SET selection_count = selection_count + 1 WHERE id = NEW.poll_id;
                        RETURN NEW;
                    END IF;
                    UPDATE dao_polls SET selection_count = GREATEST(selection_count - 1, 0) WHERE id = OLD.poll_id;
                    RETURN OLD;
                END;
                $$ LANGUAGE plpgsql
                """,
                """
                CREATE OR REPLACE FUNCTION reject_points_mutation() RETURNS trigger AS $$
                BEGIN
                    RAISE EXCEPTION 'point_transactions is append-only' USING ERRCODE = 'integrity_constraint_violation';
                END;
                $$ LANGUAGE plpgsql
                """,
                "DROP TRIGGER IF EXISTS trg_selections_limit ON selections",
                """
                CREATE TRIGGER trg_selections_limit BEFORE INSERT ON selections
                FOR EACH ROW EXECUTE FUNCTION enforce_selection_limit()
                """,
                "DROP TRIGGER IF EXISTS trg_selections_count ON selections",
                """
                CREATE TRIGGER trg_selections_count AFTER INSERT OR DELETE ON selections
                FOR EACH ROW EXECUTE FUNCTION adjust_selection_count()
                """,
                "DROP TRIGGER IF EXISTS trg_points_append_only ON point_transactions",
                """
                CREATE TRIGGER trg_points_append_only BEFORE UPDATE OR DELETE ON point_transactions
                FOR EACH ROW EXECUTE FUNCTION reject_points_mutation()
                """,
                "CREATE INDEX IF NOT EXISTS idx_dao_polls_status ON dao_polls(status, section)",
                "CREATE INDEX IF NOT EXISTS idx_dao_polls_week ON dao_polls(week_id, selection_count)",
                "CREATE INDEX IF NOT EXISTS idx_selections_wallet_week ON selections(wallet, week_id)",
                "CREATE INDEX IF NOT EXISTS idx_points_wallet ON point_transactions(member_wallet, created_at)",
            ]
        else:
            statements = [
                """
                CREATE TABLE IF NOT EXISTS dao_polls (
                    id TEXT PRIMARY KEY,
                    onchain_id INTEGER UNIQUE,
                    chain_address TEXT,
                    chain_authority TEXT,
                    creator_wallet TEXT NOT NULL,
                    question TEXT NOT NULL,
                    options TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'nomination',
                    section TEXT NOT NULL DEFAULT 'nomination',
                    week_id TEXT NOT NULL,
                    selection_count INTEGER NOT NULL DEFAULT 0,
                    deadline REAL,
                    promoted_at REAL,
                    revealed_at REAL,
                    archived_at REAL,
                    vote_counts TEXT,
                    winner INTEGER,
                    create_tx_signature TEXT,
                    reveal_tx_signature TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS selections (
                    id TEXT PRIMARY KEY,
                    poll_id TEXT NOT NULL REFERENCES dao_polls(id) ON DELETE CASCADE,
                    wallet TEXT NOT NULL,
                    week_id TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    UNIQUE (poll_id, wallet, week_id)
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS vote_records (
                    id TEXT PRIMARY KEY,
                    poll_id INTEGER NOT NULL,
                    voter_wallet TEXT NOT NULL,
                    transaction_signature TEXT NOT NULL,
                    voted_at REAL NOT NULL,
                    UNIQUE (poll_id, voter_wallet)
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS point_transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    member_wallet TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    reason TEXT NOT NULL,
                    reference_id TEXT,
                    created_at REAL NOT NULL
                )
                """,
                f"""
                CREATE TRIGGER IF NOT EXISTS trg_selections_limit BEFORE INSERT ON selections
                WHEN (SELECT COUNT(*) FROM selections
                       WHERE wallet = NEW.wallet AND week_id = NEW.week_id) >= {SELECTION_CAP}
                BEGIN
                    SELECT RAISE(ABORT, 'Selection limit reached');
                END
                """,
                """
                CREATE TRIGGER IF NOT EXISTS trg_selections_increment AFTER INSERT ON selections
                BEGIN
                    UPDATE dao_polls SET selection_count = selection_count + 1 WHERE id = NEW.poll_id;
                END
                """,
                """
                CREATE TRIGGER IF NOT EXISTS trg_selections_decrement AFTER DELETE ON selections
                BEGIN
                    UPDATE dao_polls SET selection_count = MAX(selection_count - 1, 0) WHERE id = OLD.poll_id;
                END
                """,
                """
                CREATE TRIGGER IF NOT EXISTS trg_points_no_update BEFORE UPDATE ON point_transactions
                BEGIN
                    SELECT RAISE(ABORT, 'point_transactions is append-only');
                END
                """,
                """
                CREATE TRIGGER IF NOT EXISTS trg_points_no_delete BEFORE DELETE ON point_transactions
                BEGIN
                    SELECT RAISE(ABORT, 'point_transactions is append-only');
                END
                """,
                "CREATE INDEX IF NOT EXISTS idx_dao_polls_status ON dao_polls(status, section)",
                "CREATE INDEX IF NOT EXISTS idx_dao_polls_week ON dao_polls(week_id, selection_count)",
                "CREATE INDEX IF NOT EXISTS idx_selections_wallet_week ON selections(wallet, week_id)",
                "CREATE INDEX IF NOT EXISTS idx_points_wallet ON point_transactions(member_wallet, created_at)",
            ]
        for statement in statements:
            cursor.execute(statement)


__all__ = ["Migration0001Initial", "SELECTION_CAP"]
