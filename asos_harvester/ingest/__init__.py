"""Page extraction, API fallback and pagination."""
