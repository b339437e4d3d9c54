"""CREATE TABLE statements for gallery assets and generation history."""

USER_ASSETS = """
CREATE TABLE user_assets (
    id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id       UUID NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
    prompt        TEXT NOT NULL,
    image_url     TEXT NOT NULL,
    thumbnail_url TEXT,
    storage_path  VARCHAR(500) NOT NULL,
    aspect_ratio  VARCHAR(10) NOT NULL DEFAULT '1:1',
    asset_type    VARCHAR(50),
    style         VARCHAR(100),
    is_favorite   BOOLEAN NOT NULL DEFAULT FALSE,
    is_public     BOOLEAN NOT NULL DEFAULT FALSE,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

GENERATION_HISTORY = """
CREATE TABLE generation_history (
    id                 UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id            UUID NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
    prompt             TEXT NOT NULL,
    asset_type         VARCHAR(50),
    style              VARCHAR(100),
    color              VARCHAR(100),
    aspect_ratio       VARCHAR(10) NOT NULL DEFAULT '1:1',
    status             VARCHAR(20) NOT NULL
                       CONSTRAINT ck_generation_status
                       CHECK (status IN ('succeeded', 'failed')),
    error_message      TEXT,
    cost_in_gemstones  INTEGER NOT NULL DEFAULT 0,
    generation_time_ms INTEGER,
    created_at         TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

ALL = [USER_ASSETS, GENERATION_HISTORY]
