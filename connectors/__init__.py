"""connectors/__init__.py"""
from connectors.base import SourceReader, TargetWriter
from connectors.memory import InMemorySource, InMemoryTarget
from connectors.schema_file import SchemaFileSource

__all__ = [
    "SourceReader",
    "TargetWriter",
    "InMemorySource",
    "InMemoryTarget",
    "SchemaFileSource",
]
