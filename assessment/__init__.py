"""
Quiz assessment engine for training courses.

Packages:
- assessment.quiz: configuration, question bank, scoring, sessions, engine
- assessment.certificates: certificate issuing and verification
- assessment.analytics: learning event emission
- assessment.db: SQLAlchemy models and repositories
- assessment.cli: admin command line
"""

__version__ = "1.0.0"
