# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Defines request/response schemas for the API.
# These are SEPARATE from the database models (docsense/db/models.py):
# API schemas are the public contract, DB models are how data is stored.
# =============================================================================
