"""
Tile cache proxy

- Serves /tiles/{z}/{x}/{y}.png from `data/tiles/{z}/{x}/{y}.png`
- Cache misses are fetched upstream once (single-flight), PNG-validated, then stored
- Stale tiles are served as-is and queued; /refresh (or `tileproxy refresh`, i.e. `python -m tileproxy.cli refresh`) drains the queue
- Optional endpoints: /health, /stats
"""
