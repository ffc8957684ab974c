"""
Health Fitness Ledger - Personal health and fitness tracking back end.

Groups pain logs into incidents, migrates the flat health log collection to
the normalized incident schema, flags lab results against their reference
ranges and tracks fitness goals over workouts synced from Strava.
"""

__version__ = "0.1.0"
