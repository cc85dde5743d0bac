"""Test doubles for spotshell unit tests."""
