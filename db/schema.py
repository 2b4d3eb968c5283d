"""Database table definitions for solved-problems.

Raw DDL keeps migrations simple and explicit. Polymorphic resource
references (shares, api_key_accesses) carry a resource_type discriminator
and cannot use foreign keys; access.delete_resource_references() cleans
them up when the addressed problem or group goes away.
"""

TABLES = {
    "users": """
        CREATE TABLE IF NOT EXISTS users (
            id                  TEXT PRIMARY KEY,
            email               TEXT NOT NULL UNIQUE,
            name                TEXT NOT NULL,
            role                TEXT NOT NULL DEFAULT 'USER'
                                CHECK (role IN ('USER', 'ADMIN')),
            two_factor_enabled  INTEGER NOT NULL DEFAULT 0,
            created_at          TEXT NOT NULL
        )
    """,
    "sessions": """
        CREATE TABLE IF NOT EXISTS sessions (
            id          TEXT PRIMARY KEY,
            token_hash  TEXT NOT NULL UNIQUE,
            user_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at  TEXT NOT NULL
        )
    """,
    "site_settings": """
        CREATE TABLE IF NOT EXISTS site_settings (
            id              TEXT PRIMARY KEY,
            signup_enabled  INTEGER NOT NULL DEFAULT 1,
            export_enabled  INTEGER NOT NULL DEFAULT 1
        )
    """,
    "solved_problems": """
        CREATE TABLE IF NOT EXISTS solved_problems (
            id              TEXT PRIMARY KEY,
            name            TEXT NOT NULL,
            description     TEXT NOT NULL DEFAULT '',
            app_type        TEXT NOT NULL,
            owner_id        TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            copied_from_id  TEXT REFERENCES solved_problems(id) ON DELETE SET NULL,
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL
        )
    """,
    "solved_problem_versions": """
        CREATE TABLE IF NOT EXISTS solved_problem_versions (
            solved_problem_id  TEXT NOT NULL
                               REFERENCES solved_problems(id) ON DELETE CASCADE,
            version            INTEGER NOT NULL CHECK (version > 0),
            details            TEXT NOT NULL,
            created_at         TEXT NOT NULL,
            PRIMARY KEY (solved_problem_id, version)
        )
    """,
    "dependencies": """
        CREATE TABLE IF NOT EXISTS dependencies (
            id                 TEXT PRIMARY KEY,
            solved_problem_id  TEXT NOT NULL
                               REFERENCES solved_problems(id) ON DELETE CASCADE,
            name               TEXT NOT NULL,
            version            TEXT NOT NULL,
            package_manager    TEXT NOT NULL,
            type               TEXT NOT NULL CHECK (type IN ('SERVER', 'CLIENT'))
        )
    """,
    "tags": """
        CREATE TABLE IF NOT EXISTS tags (
            id    TEXT PRIMARY KEY,
            name  TEXT NOT NULL UNIQUE
        )
    """,
    "solved_problem_tags": """
        CREATE TABLE IF NOT EXISTS solved_problem_tags (
            solved_problem_id  TEXT NOT NULL
                               REFERENCES solved_problems(id) ON DELETE CASCADE,
            tag_id             TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
            PRIMARY KEY (solved_problem_id, tag_id)
        )
    """,
    "solved_problem_groups": """
        CREATE TABLE IF NOT EXISTS solved_problem_groups (
            id          TEXT PRIMARY KEY,
            name        TEXT NOT NULL,
            owner_id    TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at  TEXT NOT NULL
        )
    """,
    "group_memberships": """
        CREATE TABLE IF NOT EXISTS group_memberships (
            group_id           TEXT NOT NULL
                               REFERENCES solved_problem_groups(id) ON DELETE CASCADE,
            solved_problem_id  TEXT NOT NULL
                               REFERENCES solved_problems(id) ON DELETE CASCADE,
            PRIMARY KEY (group_id, solved_problem_id)
        )
    """,
    "shares": """
        CREATE TABLE IF NOT EXISTS shares (
            id                   TEXT PRIMARY KEY,
            resource_type        TEXT NOT NULL
                                 CHECK (resource_type IN ('SOLVED_PROBLEM', 'GROUP')),
            resource_id          TEXT NOT NULL,
            shared_by_user_id    TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            shared_with_user_id  TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            permission           TEXT NOT NULL CHECK (permission IN ('READ', 'WRITE')),
            created_at           TEXT NOT NULL,
            UNIQUE(resource_type, resource_id, shared_with_user_id)
        )
    """,
    "api_keys": """
        CREATE TABLE IF NOT EXISTS api_keys (
            id          TEXT PRIMARY KEY,
            name        TEXT NOT NULL,
            hashed_key  TEXT NOT NULL UNIQUE,
            user_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at  TEXT NOT NULL,
            revoked_at  TEXT
        )
    """,
    "api_key_accesses": """
        CREATE TABLE IF NOT EXISTS api_key_accesses (
            id             TEXT PRIMARY KEY,
            api_key_id     TEXT NOT NULL REFERENCES api_keys(id) ON DELETE CASCADE,
            resource_type  TEXT NOT NULL
                           CHECK (resource_type IN ('SOLVED_PROBLEM', 'GROUP')),
            resource_id    TEXT NOT NULL,
            UNIQUE(api_key_id, resource_type, resource_id)
        )
    """,
    "drafts": """
        CREATE TABLE IF NOT EXISTS drafts (
            id                  TEXT PRIMARY KEY,
            solved_problem_id   TEXT REFERENCES solved_problems(id) ON DELETE CASCADE,
            proposed_data       TEXT NOT NULL,
            status              TEXT NOT NULL DEFAULT 'PENDING'
                                CHECK (status IN ('PENDING', 'APPROVED', 'REJECTED')),
            created_by_user_id  TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            api_key_id          TEXT REFERENCES api_keys(id) ON DELETE SET NULL,
            created_at          TEXT NOT NULL,
            reviewed_at         TEXT
        )
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_shares_with ON shares(shared_with_user_id, resource_type)",
    "CREATE INDEX IF NOT EXISTS idx_memberships_problem ON group_memberships(solved_problem_id)",
    "CREATE INDEX IF NOT EXISTS idx_drafts_status ON drafts(status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_dependencies_problem ON dependencies(solved_problem_id)",
]

# Ordered list for creation: respects foreign key dependencies
TABLE_CREATION_ORDER = [
    "users",
    "sessions",
    "site_settings",
    "solved_problems",
    "solved_problem_versions",
    "dependencies",
    "tags",
    "solved_problem_tags",
    "solved_problem_groups",
    "group_memberships",
    "shares",
    "api_keys",
    "api_key_accesses",
    "drafts",
]
