"""Shared pytest configuration for the fixture server tests."""

from pytest_plugin import fixture_server  # noqa: F401
