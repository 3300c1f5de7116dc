"""Paged extraction of one entity kind from a source provider."""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, Union
from datetime import datetime
import logging
import time

from ..errors import ExtractionError, SourceError, SourceRateLimitedError
from ..models.record import Page

logger = logging.getLogger(__name__)

PageToken = Optional[Union[str, int]]
PageFetcher = Callable[[PageToken, int], Page]


@dataclass
class ExtractionResult:
    """Result of an extraction operation."""
    kind: str
    records: List[Any] = field(default_factory=list)
    pages_fetched: int = 0
    rate_limit_retries: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def total_extracted(self) -> int:
        return len(self.records)

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class PagedExtractor:
    """
    Drives a source "list" capability to completion.

    Pages are requested one at a time, each with the token returned by the
    previous page. Extraction stops when a page has no next token or holds
    fewer records than the page size. Any failing page is fatal: a partial
    collection would make the migration plan silently incomplete.

    A rate-limited page is retried once after the provider-declared delay.
    """

    def __init__(
        self,
        kind: str,
        fetch_page: PageFetcher,
        page_size: int = 100,
        max_rate_limit_retries: int = 1,
        default_retry_after: float = 60.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the extractor.

        Args:
            kind: Entity kind being extracted (used in messages)
            fetch_page: Callable taking (page_token, page_size) and returning a Page
            page_size: Records requested per page
            max_rate_limit_retries: Retries allowed per page after a rate limit
            default_retry_after: Delay used when the provider gives none
            sleep: Sleep function (injectable for tests)
        """
        if page_size < 1:
            raise ValueError(f"Page size must be positive, got {page_size}")
        self.kind = kind
        self.fetch_page = fetch_page
        self.page_size = page_size
        self.max_rate_limit_retries = max_rate_limit_retries
        self.default_retry_after = default_retry_after
        self._sleep = sleep
        self._rate_limit_retries = 0

    def extract(self) -> ExtractionResult:
        """
        Extract every record of the kind.

        Returns:
            ExtractionResult with all records in source order

        Raises:
            ExtractionError: If any page request fails
        """
        result = ExtractionResult(kind=self.kind, started_at=datetime.utcnow())
        self._rate_limit_retries = 0

        for page in self.stream():
            result.records.extend(page.records)
            result.pages_fetched += 1

        result.rate_limit_retries = self._rate_limit_retries
        result.completed_at = datetime.utcnow()
        logger.info(
            f"Extracted {result.total_extracted} {self.kind} "
            f"in {result.pages_fetched} page(s)"
        )
        return result

    def stream(self) -> Iterator[Page]:
        """
        Yield pages in order until the source reports no further pages.

        Yields:
            Page objects
        """
        token: PageToken = None
        seen_tokens = set()

        while True:
            page = self._fetch_with_retry(token)
            yield page

            if page.next_token is None or len(page.records) < self.page_size:
                break

            if page.next_token in seen_tokens or page.next_token == token:
                raise ExtractionError(
                    self.kind,
                    f"source returned a repeated page token ({page.next_token!r})"
                )
            seen_tokens.add(page.next_token)
            token = page.next_token

    def _fetch_with_retry(self, token: PageToken) -> Page:
        """Fetch one page, waiting out a rate limit at most max_rate_limit_retries times."""
        retries = 0
        while True:
            try:
                logger.debug(f"Fetching {self.kind} page (token={token!r}, size={self.page_size})")
                return self.fetch_page(token, self.page_size)

            except SourceRateLimitedError as e:
                delay = e.retry_after if e.retry_after is not None else self.default_retry_after
                if retries >= self.max_rate_limit_retries:
                    raise ExtractionError(
                        self.kind,
                        f"source rate limit exceeded again after waiting. "
                        f"Wait {delay:.0f} seconds and re-run the migration.",
                        cause=e,
                    ) from e
                retries += 1
                self._rate_limit_retries += 1
                logger.warning(
                    f"Rate limited while fetching {self.kind}; "
                    f"retrying once in {delay:.0f} seconds"
                )
                self._sleep(delay)

            except SourceError as e:
                raise ExtractionError(self.kind, str(e), cause=e) from e

            except (KeyError, TypeError, ValueError) as e:
                raise ExtractionError(
                    self.kind, f"unexpected response shape: {e!r}", cause=e
                ) from e
