"""
Default policy seed, resource/action catalogue and menu projection table.

Seeded on first start when the rule table is empty.
"""

from __future__ import annotations

SUPER_ROLE = "super_admin"

DEFAULT_RULES: list[tuple[str, str, str]] = [
    (SUPER_ROLE, "*", "*"),
    # security manager
    ("sec_mgr", "dashboard", "read"),
    ("sec_mgr", "users", "read"),
    ("sec_mgr", "users", "create"),
    ("sec_mgr", "users", "update"),
    ("sec_mgr", "users", "delete"),
    ("sec_mgr", "permissions", "read"),
    ("sec_mgr", "permissions", "create"),
    ("sec_mgr", "permissions", "update"),
    ("sec_mgr", "permissions", "delete"),
    ("sec_mgr", "audit", "read"),
    ("sec_mgr", "secret", "read"),
    ("sec_mgr", "secret", "create"),
    ("sec_mgr", "secret", "update"),
    ("sec_mgr", "secret", "delete"),
    ("sec_mgr", "access_request", "read"),
    ("sec_mgr", "access_request", "approve"),
    ("sec_mgr", "access_request", "reject"),
    ("sec_mgr", "access_request", "cancel"),
    ("sec_mgr", "notification", "create"),
    ("sec_mgr", "notification", "bulk_send"),
    ("sec_mgr", "notification", "view_templates"),
    # developer
    ("dev", "dashboard", "read"),
    ("dev", "secret", "read"),
    ("dev", "secret", "request"),
    ("dev", "access_request", "read"),
    ("dev", "access_request", "cancel"),
    # auditor
    ("auditor", "dashboard", "read"),
    ("auditor", "audit", "read"),
    ("auditor", "notification", "view_templates"),
    # automation
    ("bot", "secret", "temp"),
]

# (child, parent)
DEFAULT_INHERITANCE: list[tuple[str, str]] = [
    ("sec_mgr", "dev"),
    ("auditor", "dev"),
]

CATALOGUE: dict[str, list[str]] = {
    "dashboard": ["read"],
    "users": ["read", "create", "update", "delete"],
    "permissions": ["read", "create", "update", "delete"],
    "audit": ["read"],
    "secret": ["read", "create", "update", "delete", "request", "temp"],
    "access_request": ["read", "create", "update", "approve", "reject", "cancel"],
    "notification": ["read", "create", "bulk_send", "view_templates"],
}

# (path, title, icon, order, resource, action)
MENUS: list[tuple[str, str, str, int, str, str]] = [
    ("/dashboard", "Dashboard", "LayoutDashboard", 1, "dashboard", "read"),
    ("/users", "Users", "Users", 2, "users", "read"),
    ("/policy", "Roles & Permissions", "Shield", 3, "permissions", "read"),
    ("/audit", "Audit Log", "FileText", 4, "audit", "read"),
    ("/access_requests", "Access Requests", "FileText", 5, "access_request", "read"),
    ("/api_key", "API Keys", "Key", 6, "secret", "read"),
    ("/access_key", "Access Keys", "KeyRound", 7, "secret", "read"),
    ("/ssh_key", "SSH Keys", "Terminal", 8, "secret", "read"),
    ("/password", "Passwords", "Lock", 9, "secret", "read"),
    ("/token", "Tokens", "Coins", 10, "secret", "read"),
    ("/kv", "Key/Value", "Braces", 11, "secret", "read"),
]
