"""
Deedkeeper - real-estate document records with role-scoped access.

Referential integrity, orphan reclamation, backups and ownership transfer
over a schemaless collection store.
"""

__version__ = "1.0.0"
