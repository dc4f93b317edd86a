"""
Module hierarchy: a user's arrangement of module shortcuts into items and folders.

Scope:
- Reconcile a persisted forest against the current catalog (legacy ids, revoked grants, new grants)
- Pure structural edits (drag/drop, move, folders, toggle)
- Local cache write on every edit, debounced remote write to module_hierarchy_states
- Custom display names, fanned out to every module_assignments row sharing a key
"""
