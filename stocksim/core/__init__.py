"""Core primitives: errors, time helpers and the trading calendar."""
