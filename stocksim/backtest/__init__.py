"""Simulation engine: ledger, parameter bundles, trial driver and experiment runner.

Provides reusable components for running randomized trials, aggregating their
statistics and exposing a fitness function to parameter searches.
"""
