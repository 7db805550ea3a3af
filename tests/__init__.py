"""
Voice Agent Tests

Unit tests live in tests/unit and need no running services: the Calendar
Agent, knowledge service, email API, Redis and Claude are all mocked.

Running Tests:
    pip install -e ".[test]"
    pytest tests/unit -v
"""
