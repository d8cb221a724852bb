"""transpod: serve podcast feeds limited to their most recent episodes."""

from .fetcher import FeedFetcher, fetch
from .models import FetchError, TransformError, TranspodError
from .transform import FeedTransformer, transform

__all__ = [
    "FeedFetcher",
    "FeedTransformer",
    "FetchError",
    "TransformError",
    "TranspodError",
    "fetch",
    "transform",
]
