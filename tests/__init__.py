"""
Test suite for feed-gate

Contains:
- tests/unit/          : Unit tests for individual modules, run against an
                         in-process fake node (httpx.MockTransport)
"""
