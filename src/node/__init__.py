"""Node start flow: artifact caching around machine creation."""
