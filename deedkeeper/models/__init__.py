"""Deedkeeper models: ORM tables and API schemas."""
