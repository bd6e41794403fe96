"""Business logic services for the Babylon Fin billing API."""
