"""Concrete adapters for the interfaces in :mod:`knowledge_search.interfaces`."""
