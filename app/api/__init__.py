# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - knowledge.py: Scan / process / cleanup dispatch, task polling, and the
#     knowledge base status view
# =============================================================================
