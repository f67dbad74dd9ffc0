"""Deedkeeper HTTP routers."""
