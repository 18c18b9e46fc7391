"""Abstract base classes for data providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from stock_events.models.datatypes import Bar, CompanyProfile, NewsArticle


class BarProvider(ABC):
    """Abstract interface for fetching daily and weekly OHLC bars.

    Implementations raise :class:`~stock_events.core.errors.RateLimited` when a
    quota is exhausted and :class:`~stock_events.core.errors.ProviderError` for
    any other upstream failure.
    """

    name: str = "bars"

    @abstractmethod
    def get_daily(self, symbol: str) -> List[Bar]:
        """
        Fetch daily bars for a symbol.

        Args:
            symbol (str): The ticker symbol.

        Returns:
            List[Bar]: Bars in ascending date order.
        """
        pass

    @abstractmethod
    def get_weekly(self, symbol: str) -> List[Bar]:
        """
        Fetch weekly bars for a symbol.

        Args:
            symbol (str): The ticker symbol.

        Returns:
            List[Bar]: Bars in ascending date order.
        """
        pass


class NewsProvider(ABC):
    """Abstract interface for fetching company-specific news."""

    name: str = "news"

    @abstractmethod
    def get_company_news(self, symbol: str, from_date: date, to_date: date) -> List[NewsArticle]:
        """
        Fetch news articles for a stock published within a closed date interval.

        Args:
            symbol (str): The ticker symbol.
            from_date (date): First day of the window.
            to_date (date): Last day of the window (inclusive).

        Returns:
            List[NewsArticle]: A list of normalized NewsArticle objects.
        """
        pass


class ProfileProvider(ABC):
    """Abstract interface for company profile lookups (optional enrichment)."""

    @abstractmethod
    def get_profile(self, symbol: str) -> Optional[CompanyProfile]:
        """Return the company's display name and industry, or None if unknown."""
        pass


class QuoteProvider(ABC):
    """Abstract interface for the latest traded price."""

    @abstractmethod
    def get_quote(self, symbol: str) -> Optional[float]:
        """Return the current price, or None if unknown."""
        pass


@dataclass
class SentimentResult:
    """Output of a single sentiment inference call.

    Attributes:
        label: Canonical label, ``"Positive"``, ``"Neutral"``, or ``"Negative"``.
        score: Continuous score in ``[-1.0, 1.0]``.
        raw_label: Original label string returned by the model.
        raw_score: Original softmax confidence returned by the model.
    """
    label: str
    score: float
    raw_label: str
    raw_score: float


class SentimentProvider(ABC):
    """Abstract interface for classifying financial text sentiment."""

    @abstractmethod
    def analyze(self, text: str) -> SentimentResult:
        """
        Analyze the sentiment of a given text.

        Args:
            text (str): The text to analyze.

        Returns:
            SentimentResult: Categorical label (Positive/Neutral/Negative) and
                             continuous score in [-1.0, 1.0].
        """
        pass
