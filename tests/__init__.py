"""
Tile proxy test suite

Structure:
- unit/: tests for individual components (store, validator, fetcher, queue, locks, config)
- integration/: service-level and HTTP tests against a temporary cache root
"""
