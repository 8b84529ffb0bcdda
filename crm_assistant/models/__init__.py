"""Domain, API and persistence models."""
