"""CREATE TABLE statements for store packages, purchases, and webhooks."""

GEMSTONE_PACKAGES = """
CREATE TABLE gemstone_packages (
    product_id          VARCHAR(100) PRIMARY KEY,
    title               VARCHAR(100) NOT NULL,
    description         TEXT,
    price_cents         INTEGER NOT NULL,
    gemstone_amount     INTEGER,
    is_subscription     BOOLEAN NOT NULL DEFAULT FALSE,
    subscription_period VARCHAR(10)
                        CONSTRAINT ck_package_subscription_period
                        CHECK (subscription_period IS NULL
                               OR subscription_period IN ('monthly', 'yearly')),
    is_active           BOOLEAN NOT NULL DEFAULT TRUE,
    sort_order          INTEGER NOT NULL DEFAULT 0
);
"""

PURCHASE_RECORDS = """
CREATE TABLE purchase_records (
    id                   UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id              UUID NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
    product_id           VARCHAR(100) NOT NULL,
    store_transaction_id VARCHAR(255) NOT NULL UNIQUE,
    gemstones_credited   INTEGER NOT NULL DEFAULT 0,
    is_subscription      BOOLEAN NOT NULL DEFAULT FALSE,
    source               VARCHAR(20) NOT NULL
                         CONSTRAINT ck_purchase_source
                         CHECK (source IN ('client', 'webhook')),
    created_at           TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

PROCESSED_WEBHOOKS = """
CREATE TABLE processed_webhooks (
    event_id     VARCHAR(255) PRIMARY KEY,
    processed_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

ALL = [GEMSTONE_PACKAGES, PURCHASE_RECORDS, PROCESSED_WEBHOOKS]
