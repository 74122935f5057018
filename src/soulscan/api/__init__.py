"""HTTP surface for SoulScan.

Structure:
- routers/: library (folders, scans), enrichment and health endpoints
- dependencies.py: pulls the long-lived services off app.state
- exception_handlers.py: maps domain exceptions to HTTP status codes
"""
