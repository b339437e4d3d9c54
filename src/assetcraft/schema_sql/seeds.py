"""Seed data INSERT statements."""

GEMSTONE_PACKAGES = """
INSERT INTO gemstone_packages
    (product_id, title, description, price_cents, gemstone_amount,
     is_subscription, subscription_period, is_active, sort_order)
VALUES
    ('gems_50',     'Starter Pack', 'Perfect for getting started', 299,  50,   FALSE, NULL,      TRUE, 10),
    ('gems_150',    'Value Pack',   'Best value for your money',   799,  150,  FALSE, NULL,      TRUE, 20),
    ('gems_350',    'Premium Pack', 'For serious creators',        1599, 350,  FALSE, NULL,      TRUE, 30),
    ('gems_1000',   'Mega Pack',    'Ultimate creation power',     3999, 1000, FALSE, NULL,      TRUE, 40),
    ('pro_monthly', 'AssetCraft Pro', 'Monthly subscription',      999,  NULL, TRUE,  'monthly', TRUE, 50),
    ('pro_yearly',  'AssetCraft Pro', 'Yearly subscription (2 months free!)', 9999, NULL, TRUE, 'yearly', TRUE, 60);
"""

ALL = [GEMSTONE_PACKAGES]
