"""
Repository layer for data access.

Provides typed, validated access to MongoDB collections following the
Repository pattern.
"""

from docrepo.repositories.base import InsertedDocument, InsertedDocuments, Repository

__all__ = ["Repository", "InsertedDocument", "InsertedDocuments"]
