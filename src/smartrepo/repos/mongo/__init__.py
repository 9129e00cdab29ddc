"""
MongoDB backend for smartrepo.

Requires the "mongo" extra (pymongo with its asyncio API).
"""

from smartrepo.repos.mongo.compiler import MongoCompiler
from smartrepo.repos.mongo.cursor import MongoCursorCodec
from smartrepo.repos.mongo.repo import MongoRepo

__all__ = [
    "MongoCompiler",
    "MongoCursorCodec",
    "MongoRepo",
]
