"""
Access request package.

- models: the AccessRequest aggregate, its structured notes, API models.
- store: the store contract and the in-memory store.
- postgres: the PostgreSQL store.
- lifecycle: the request state machine.
"""
