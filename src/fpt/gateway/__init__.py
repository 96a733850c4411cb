from .base import Gateway
from .http_gateway import HttpGateway, random_tag
from .urls import DEFAULT_BASE_URL, UrlBuilder

__all__ = [
    "DEFAULT_BASE_URL",
    "Gateway",
    "HttpGateway",
    "UrlBuilder",
    "random_tag",
]
