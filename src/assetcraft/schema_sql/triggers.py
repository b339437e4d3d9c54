"""Trigger functions and trigger DDL for the initial schema."""

# ---- Trigger functions ----

FN_RAISE_IMMUTABLE = """
CREATE OR REPLACE FUNCTION raise_immutable_error()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION 'Rows in table % are immutable', TG_TABLE_NAME;
END;
$$ LANGUAGE plpgsql;
"""

FN_TOUCH_UPDATED_AT = """
CREATE OR REPLACE FUNCTION touch_updated_at()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = now();
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

FN_GUARD_LEDGER_DELETE = """
CREATE OR REPLACE FUNCTION guard_ledger_delete()
RETURNS TRIGGER AS $$
BEGIN
    -- Ledger rows only go away with their profile (account deletion cascade).
    IF EXISTS (SELECT 1 FROM user_profiles WHERE id = OLD.user_id) THEN
        RAISE EXCEPTION 'Rows in table % are immutable', TG_TABLE_NAME;
    END IF;
    RETURN OLD;
END;
$$ LANGUAGE plpgsql;
"""

FUNCTIONS_ALL = [
    FN_RAISE_IMMUTABLE,
    FN_GUARD_LEDGER_DELETE,
    FN_TOUCH_UPDATED_AT,
]

# ---- Triggers ----

TRIGGERS_ALL = [
    "CREATE TRIGGER trg_processed_webhooks_immutable "
    "BEFORE UPDATE OR DELETE ON processed_webhooks "
    "FOR EACH ROW EXECUTE FUNCTION raise_immutable_error();",

    "CREATE TRIGGER trg_gemstone_transactions_immutable "
    "BEFORE UPDATE ON gemstone_transactions "
    "FOR EACH ROW EXECUTE FUNCTION raise_immutable_error();",

    "CREATE TRIGGER trg_gemstone_transactions_delete_guard "
    "BEFORE DELETE ON gemstone_transactions "
    "FOR EACH ROW EXECUTE FUNCTION guard_ledger_delete();",

    "CREATE TRIGGER trg_user_profiles_touch "
    "BEFORE UPDATE ON user_profiles "
    "FOR EACH ROW EXECUTE FUNCTION touch_updated_at();",

    "CREATE TRIGGER trg_user_assets_touch "
    "BEFORE UPDATE ON user_assets "
    "FOR EACH ROW EXECUTE FUNCTION touch_updated_at();",
]
