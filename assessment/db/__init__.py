"""
Persistence for the assessment engine.

- protocols: repository interfaces the engine depends on
- models: SQLAlchemy table definitions
- repositories: PostgreSQL implementations over an AsyncSession
- memory: in-process implementations
- database: engines and transactional scopes (imported on demand, since it
  creates the engine at import time)
"""
