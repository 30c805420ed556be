"""
Test suite for the Peekbank import pipeline.

This package contains unit tests and integration tests for:
- Raw layout reshaping and readers
- Time alignment and resampling
- Key assignment and identity conflicts
- Table assembly, validation and export
"""
