"""
Test suite for the map index service.

Test Organization:
- test_store.py: Record validation and point store adapters
- test_spatial.py: Cluster index build, viewport queries, expansion
- test_search.py: Name scoring and combined ranking
- test_service.py: Index lifecycle, reload and caching
- test_config.py: Profiles and environment overrides
- test_actions.py: HTTP endpoints via FastAPI TestClient
"""
