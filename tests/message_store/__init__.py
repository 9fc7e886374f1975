"""
Tests for the Message Store package.

This package contains tests for:
- Column mapping and identifier safety
- Schema registry
- Shared and dedicated storage strategies
- Size-bounded retention
- The MessageStore facade, export and CLI
"""
