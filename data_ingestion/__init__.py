"""Data Ingestion Package.

Scene descriptions from YAML files and seeded synthetic greenhouse scenes.
"""
