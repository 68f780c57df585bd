"""
Database module - SQLite persistence for feeds, articles, posts and app params.

Uses repository pattern for better separation of concerns.
"""

from .connection import DatabaseConnection
from .models import DBArticle, DBArticleWithPost, DBFeed, DBPost, ExistingArticleKey
from .article_repository import ArticleRepository
from .feed_repository import FeedRepository
from .post_repository import PostRepository
from .app_params_repository import AppParamsRepository
from .database import Database

__all__ = [
    "Database",
    "DatabaseConnection",
    "DBArticle",
    "DBArticleWithPost",
    "DBFeed",
    "DBPost",
    "ExistingArticleKey",
    "ArticleRepository",
    "FeedRepository",
    "PostRepository",
    "AppParamsRepository",
]
