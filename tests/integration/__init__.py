"""
Integration Tests - Venue Aggregation
Tests for the orchestrator wired to real pipeline components and scripted providers.
"""
