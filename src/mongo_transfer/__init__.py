"""
MongoDB Transfer Module

Moves MongoDB collections to and from flat files (extended JSON or CSV)
while preserving ObjectIds, dates and numbers across the boundary.

Key components:
- core/: Run models, exceptions, logging and filesystem helpers
- config/: Configuration loading (defaults, YAML, environment)
- transfer/: Value codec, checksum manifest, file streams, conflict
  strategies and the export/import pipelines
- cli.py: Command-line entry point
"""

__version__ = "0.1.0"
