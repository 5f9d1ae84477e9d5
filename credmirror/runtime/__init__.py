"""In-memory view of the credentials the proxy runtime routes to."""
