"""Meeting file sharing -- conferencing-token auth and object storage proxy."""
