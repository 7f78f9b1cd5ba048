"""Tests for autoremedy.

A package so test modules get fully-qualified names and shared helpers can be
imported as ``tests.conftest``.
"""
