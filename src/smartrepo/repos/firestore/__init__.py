"""
Cloud Firestore backend for smartrepo.

Requires the "firestore" extra (google-cloud-firestore).
"""

from smartrepo.repos.firestore.compiler import NEVER, FirestoreCompiler
from smartrepo.repos.firestore.repo import FirestoreRepo

__all__ = [
    "NEVER",
    "FirestoreCompiler",
    "FirestoreRepo",
]
