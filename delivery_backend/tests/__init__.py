'''
Hub Delivery Backend Test Suite

Test Modules:
-------------
- test_send_detection.py: Newsletter send-burst detection
  - Gap threshold (strictly greater-than)
  - Date normalisation and malformed input
  - Per-placement additivity and noise suppression

- test_delivery_summary.py: Delivery reconciliation
  - Expected goals from the inventory snapshot
  - Channel dispatch table and rounding
  - Report counting and tracking-pixel entries
  - Pixel health diagnosis
  - Persisted resync and best-effort refresh

- test_performance_entries.py: Performance entry rules and routes
  - Validation and CTR
  - CRUD routes, immutability of automated entries, bulk import

- test_jobs.py: Delivery summary resync job

Running Tests:
--------------
    pytest delivery_backend/tests/ -v
'''
