"""API routers for the Babylon Fin billing service."""
