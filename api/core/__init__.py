"""
Shared, cross-cutting code for the API.

`core/` holds small building blocks that multiple features use
(DB wiring, env config, logging, upstream HTTP retry, rate limiting).
Feature-specific SQL and business logic stay in the feature package
(e.g. `nodes/`, `sync/`).
"""
