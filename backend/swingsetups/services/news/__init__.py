"""
News Service

Headlines and horizon-aware sentiment classification.
"""

from swingsetups.services.news.service import NewsService, get_news_service, news_query

__all__ = ["NewsService", "get_news_service", "news_query"]
