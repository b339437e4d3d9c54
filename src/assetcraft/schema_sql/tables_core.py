"""CREATE TABLE statements for profiles, the gemstone ledger, and ad rewards."""

USER_PROFILES = """
CREATE TABLE user_profiles (
    id                    UUID PRIMARY KEY REFERENCES auth.users(id) ON DELETE CASCADE,
    email                 VARCHAR(320),
    display_name          VARCHAR(100),
    avatar_url            TEXT,
    gemstone_count        INTEGER NOT NULL DEFAULT 0
                          CONSTRAINT ck_profile_gemstones_non_negative
                          CHECK (gemstone_count >= 0),
    subscription_status   VARCHAR(20) NOT NULL DEFAULT 'free'
                          CONSTRAINT ck_profile_subscription_status
                          CHECK (subscription_status IN ('free', 'pro')),
    subscription_end_date TIMESTAMPTZ,
    total_generations     INTEGER NOT NULL DEFAULT 0,
    last_daily_grant_date DATE,
    last_ad_reward_at     TIMESTAMPTZ,
    created_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at            TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

GEMSTONE_TRANSACTIONS = """
CREATE TABLE gemstone_transactions (
    txn_id       BIGSERIAL PRIMARY KEY,
    user_id      UUID NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
    amount       INTEGER NOT NULL,
    txn_type     VARCHAR(30) NOT NULL
                 CONSTRAINT ck_gemstone_txn_type
                 CHECK (txn_type IN (
                     'signup_bonus','daily_grant','purchase','ad_reward',
                     'spend','refund','admin_adjustment'
                 )),
    reference_id VARCHAR(255),
    created_at   TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

AD_REWARDS = """
CREATE TABLE ad_rewards (
    transaction_id VARCHAR(255) PRIMARY KEY,
    user_id        UUID NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
    ad_unit        VARCHAR(255),
    reward_amount  INTEGER NOT NULL,
    credited       BOOLEAN NOT NULL DEFAULT TRUE,
    created_at     TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

ALL = [
    USER_PROFILES,
    GEMSTONE_TRANSACTIONS,
    AD_REWARDS,
]
