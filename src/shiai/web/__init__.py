"""FastAPI JSON API for judges, table officials and organizers."""
