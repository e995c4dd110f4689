"""Local HTTP host surface for the search engine."""
