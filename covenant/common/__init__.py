"""
Shared primitives used by terms, schemer and contract:
- Structured JSON logging (event_type-tagged)
- Env-sourced settings
- Declaration file resolution + mtime-keyed parse cache
"""
