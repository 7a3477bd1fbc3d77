"""
Observability package - tracing and logging setup.
"""
