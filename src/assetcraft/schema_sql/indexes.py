"""All CREATE INDEX statements for the initial schema."""

ALL = [
    # gemstone_transactions
    "CREATE INDEX idx_gem_txn_user ON gemstone_transactions(user_id, txn_id DESC);",
    # ad_rewards
    "CREATE INDEX idx_ad_rewards_user ON ad_rewards(user_id, created_at DESC);",
    # user_assets
    "CREATE INDEX idx_user_assets_user ON user_assets(user_id, created_at DESC);",
    "CREATE INDEX idx_user_assets_public ON user_assets(created_at DESC) "
    "WHERE is_public = TRUE;",
    # generation_history
    "CREATE INDEX idx_generation_history_user "
    "ON generation_history(user_id, created_at DESC);",
    # purchase_records
    "CREATE INDEX idx_purchase_user ON purchase_records(user_id, created_at DESC);",
]
