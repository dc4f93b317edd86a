"""
Feature modules live under this package.

Keep module boundaries clean: each module should own its routes/models/services,
while reusing platform primitives (auth, audit, storage, DB session).
"""
