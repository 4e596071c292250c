"""
Relational schema for the panel store.

Timestamps are stored as integer Unix seconds.
"""

from .db import Database

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    telegram_id INTEGER UNIQUE,
    role TEXT NOT NULL DEFAULT 'vassal',
    certificate TEXT,
    created_at INTEGER NOT NULL,
    last_login_at INTEGER,
    invited_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
    traffic_limit INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS invite_codes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    code TEXT NOT NULL UNIQUE,
    created_by INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    created_at INTEGER NOT NULL,
    used_by INTEGER REFERENCES users(id) ON DELETE CASCADE,
    used_at INTEGER,
    expired INTEGER NOT NULL DEFAULT 0,
    expires_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS routes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    network TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    type TEXT NOT NULL DEFAULT 'custom',
    created_by INTEGER REFERENCES users(id) ON DELETE CASCADE,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS asn_routes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    asn INTEGER NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    type TEXT NOT NULL DEFAULT 'asn',
    created_by INTEGER REFERENCES users(id) ON DELETE CASCADE,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS route_groups (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    created_by INTEGER REFERENCES users(id) ON DELETE CASCADE,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS route_group_items (
    group_id INTEGER NOT NULL REFERENCES route_groups(id) ON DELETE CASCADE,
    route_id INTEGER NOT NULL REFERENCES routes(id) ON DELETE CASCADE,
    PRIMARY KEY (group_id, route_id)
);

CREATE TABLE IF NOT EXISTS user_routes (
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    route_id INTEGER NOT NULL REFERENCES routes(id) ON DELETE CASCADE,
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at INTEGER NOT NULL,
    PRIMARY KEY (user_id, route_id)
);

CREATE TABLE IF NOT EXISTS user_route_groups (
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    group_id INTEGER NOT NULL REFERENCES route_groups(id) ON DELETE CASCADE,
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at INTEGER NOT NULL,
    PRIMARY KEY (user_id, group_id)
);

CREATE TABLE IF NOT EXISTS user_traffic (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    bytes INTEGER NOT NULL,
    timestamp INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_user_traffic_user_ts ON user_traffic(user_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_invite_codes_created_by ON invite_codes(created_by);
CREATE INDEX IF NOT EXISTS idx_routes_type ON routes(type);
"""

TABLES = (
    "users",
    "invite_codes",
    "routes",
    "asn_routes",
    "route_groups",
    "route_group_items",
    "user_routes",
    "user_route_groups",
    "user_traffic",
)

def initialize_schema(db: Database) -> None:
    """Create all tables if they do not exist yet."""
    db.execute_script(SCHEMA)
