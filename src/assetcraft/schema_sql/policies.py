"""Row level security for tables exposed through the Supabase REST API.

Clients may read their own rows (and public assets). All writes go through
the backend, which connects with a role that bypasses RLS.
"""

ENABLE_ALL = [
    "ALTER TABLE user_profiles ENABLE ROW LEVEL SECURITY;",
    "ALTER TABLE gemstone_transactions ENABLE ROW LEVEL SECURITY;",
    "ALTER TABLE user_assets ENABLE ROW LEVEL SECURITY;",
    "ALTER TABLE generation_history ENABLE ROW LEVEL SECURITY;",
    "ALTER TABLE purchase_records ENABLE ROW LEVEL SECURITY;",
    "ALTER TABLE ad_rewards ENABLE ROW LEVEL SECURITY;",
]

POLICIES_ALL = [
    'CREATE POLICY "Users can view their own profile" ON user_profiles '
    "FOR SELECT USING (auth.uid() = id);",

    'CREATE POLICY "Users can view their own ledger" ON gemstone_transactions '
    "FOR SELECT USING (auth.uid() = user_id);",

    'CREATE POLICY "Users can view their own or public assets" ON user_assets '
    "FOR SELECT USING (auth.uid() = user_id OR is_public);",

    'CREATE POLICY "Users can view their own history" ON generation_history '
    "FOR SELECT USING (auth.uid() = user_id);",

    'CREATE POLICY "Users can view their own purchases" ON purchase_records '
    "FOR SELECT USING (auth.uid() = user_id);",

    'CREATE POLICY "Users can view their own ad rewards" ON ad_rewards '
    "FOR SELECT USING (auth.uid() = user_id);",
]

POLICY_NAMES = [
    ("user_profiles", "Users can view their own profile"),
    ("gemstone_transactions", "Users can view their own ledger"),
    ("user_assets", "Users can view their own or public assets"),
    ("generation_history", "Users can view their own history"),
    ("purchase_records", "Users can view their own purchases"),
    ("ad_rewards", "Users can view their own ad rewards"),
]
