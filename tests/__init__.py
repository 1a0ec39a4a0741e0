"""Test suite for Dynaform.

This package contains tests for:
- Form definitions (structure checks, ordering, serialization)
- Payload validation (required fields, typed values, option lists)
- Subscription lifecycle (transitions, authorization, timestamps)
- Audit events (emission, serialization)
- Integration scenarios through FormRuntime
"""
