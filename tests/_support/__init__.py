"""
Test support utilities for sandbox-spine tests.

Helpers that are not pytest fixtures but are shared across test modules,
such as the in-memory Docker double in :mod:`tests._support.fake_docker`.
"""
