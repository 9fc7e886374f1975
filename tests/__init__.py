"""
Tests for the message store.
"""
