"""Organizations module -- org and membership tables, repository and service."""
