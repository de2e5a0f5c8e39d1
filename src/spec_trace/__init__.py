"""
spec-trace — package root

File: src/spec_trace/__init__.py

Purpose
- Specification dependency and traceability compiler: parses spec/plan/task
  documents, links them into a reference graph, re-derives plans and tasks
  without destroying authored work, and checks them against a constitution.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
