"""Reusable validators for request schemas.

- password.py: password strength rules for registration and password change
"""
