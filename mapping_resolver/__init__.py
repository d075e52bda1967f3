"""Mapping Resolver - ledger category to accounting account mapping."""

from mapping_resolver.models import CategoryMapping
from mapping_resolver.resolver import AccountDirectory, CategorySource, MappingResolver

__all__ = [
    "AccountDirectory",
    "CategoryMapping",
    "CategorySource",
    "MappingResolver",
]
