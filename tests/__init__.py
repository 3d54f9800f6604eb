"""
volsnap test suite.

This package contains:
- unit/: Unit tests (in-memory cloud, scripted host commands)
- integration/: Both phases end to end against the in-memory cloud
"""
