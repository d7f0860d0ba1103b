"""Session services: the in-memory poker domain (``services.poker``) and the
snapshot store backed by the database (``services.store``)."""
