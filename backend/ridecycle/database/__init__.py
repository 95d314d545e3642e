"""
Database package: async engine and session management plus ORM models.
"""
