"""
Test Suite for Trading Platform

Comprehensive test suite including unit tests, integration tests,
and system tests for all platform components.

Test Categories:
- Unit tests: Individual function and class testing
- Integration tests: Service interaction testing
- System tests: End-to-end workflow testing
"""
