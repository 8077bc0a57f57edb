"""
Wire contract tests for mongo-import.

These tests pin the JSON envelopes consumers read from Kafka.

**Run Locally:**
    pytest tests/contracts/ -v

**Design Principles:**
- No database or broker dependencies
- Pure schema validation against tests/fixtures/schemas
"""
