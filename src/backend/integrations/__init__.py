"""Integration adapters for external systems (Sage Business Cloud Accounting).

Keep these modules small and testable:
- No web framework request/response objects
- No token persistence (callers own storage)
- Pure IO + parsing helpers
"""
