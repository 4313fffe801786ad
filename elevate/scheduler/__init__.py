"""
Job scheduling: stateful job base, task scheduler and process entry point.
"""
