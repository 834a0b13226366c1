"""
SQLite schema for SOPs, rules, resolved conflicts and the tag registry
"""

SCHEMA = """
-- SOPs (rule collections)
CREATE TABLE IF NOT EXISTS sops (
    sop_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    client_prefix TEXT NOT NULL,
    status TEXT DEFAULT 'active',
    created_at TEXT,
    updated_at TEXT
);

-- Rules, one row per rule, full record as JSON
CREATE TABLE IF NOT EXISTS rules (
    sop_id TEXT NOT NULL,
    rule_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    status TEXT,
    data TEXT NOT NULL,              -- JSON: canonical rule without conflicts
    PRIMARY KEY (sop_id, rule_id),
    FOREIGN KEY (sop_id) REFERENCES sops(sop_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_rules_sop_position ON rules(sop_id, position);

-- Conflict ids closed by an operator; never reported again
CREATE TABLE IF NOT EXISTS resolved_conflicts (
    sop_id TEXT NOT NULL,
    conflict_id TEXT NOT NULL,
    action TEXT,
    resolved_at TEXT,
    PRIMARY KEY (sop_id, conflict_id),
    FOREIGN KEY (sop_id) REFERENCES sops(sop_id) ON DELETE CASCADE
);

-- Tag registry
CREATE TABLE IF NOT EXISTS tags (
    tag_id TEXT PRIMARY KEY,         -- "{type}:{tag}"
    tag TEXT NOT NULL,
    type TEXT NOT NULL,              -- code_group, payer_group, provider_group, action, chart_section
    description TEXT,
    status TEXT NOT NULL,
    usage_count INTEGER DEFAULT 0,
    created_by TEXT,
    origin_rule_id TEXT,
    origin_sop_id TEXT,
    expands_to TEXT,                 -- JSON array
    created_at TEXT,
    updated_at TEXT,
    UNIQUE (tag, type)
);

CREATE INDEX IF NOT EXISTS idx_tags_status ON tags(status);
"""
