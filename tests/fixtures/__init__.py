"""
Pytest fixtures for the courier test suite.

Fixtures are organized by subsystem:
- http_mocking: recording transport functions and MockTransport clients
"""
