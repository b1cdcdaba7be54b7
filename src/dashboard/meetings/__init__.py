"""Meeting history module -- event-log models, repository, aggregation and ingest."""
