"""Schema cloning and bulk copy of tables missing from the destination."""
