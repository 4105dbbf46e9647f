import logging
from dataclasses import dataclass
from typing import Optional, List

import requests
from dacite import from_dict, Config, DaciteError

from .config import ApiSettings
from .rate_limiter import TokenBucketLimiter, AcquireCancelled

logger = logging.getLogger(__name__)

AUTH_HEADER = "x-access-token"


def _camel_case(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


# upstream keys are camelCase (marketCap)
LISTING_CONFIG = Config(convert_key=_camel_case)


class PageFetchError(Exception):
    """A single listing page could not be retrieved or parsed."""

    def __init__(self, page: int, message: str):
        super().__init__(f"Page {page} - {message}")
        self.page = page


@dataclass
class FetchedRecord:
    uuid: str
    symbol: str
    name: str
    price: Optional[str]
    market_cap: Optional[str]


@dataclass
class CoinsListing:
    coins: List[FetchedRecord]


@dataclass
class ListingResponse:
    data: CoinsListing


class CoinrankingAPI:
    """
    Client for the paginated coins listing.

    Pages are requested one at a time; every attempt first takes a permit
    from the rate limiter.
    """

    def __init__(self, settings: ApiSettings, limiter: Optional[TokenBucketLimiter] = None) -> None:
        self.settings = settings
        self.limiter = limiter or TokenBucketLimiter(settings.rate_interval_seconds, burst=1)

    def build_api(self, page: int) -> str:
        offset = page * self.settings.page_size
        separator = "&" if "?" in self.settings.base_url else "?"

        return (f"{self.settings.base_url}"
                f"{separator}limit={self.settings.page_size}"
                f"&offset={offset}"
                )

    def make_request(self, endpoint: str) -> requests.Response:
        return requests.get(
            endpoint,
            headers={AUTH_HEADER: self.settings.api_key},
            timeout=self.settings.request_timeout
        )

    def build_response(self, page: int, response: requests.Response) -> List[FetchedRecord]:
        """
        Validate one page's response and return its records.

        :raises PageFetchError: On a non-success status or an unexpected body
        """
        if not 200 <= response.status_code < 300:
            raise PageFetchError(page, f"API request failed with status: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise PageFetchError(page, f"JSON parse error: {e}")

        if not isinstance(payload, dict):
            raise PageFetchError(page, f"unexpected body type: {type(payload).__name__}")

        try:
            parsed = from_dict(data_class=ListingResponse, data=payload, config=LISTING_CONFIG)
        except DaciteError as e:
            raise PageFetchError(page, f"malformed listing: {e}")

        return parsed.data.coins

    def fetch_page(self, page: int, stop_event=None) -> List[FetchedRecord]:
        """
        Fetch a single page, retrying up to ``page_retries`` extra times.

        :raises PageFetchError: When every attempt failed
        :raises AcquireCancelled: If stop_event is set while waiting to send
        """
        endpoint = self.build_api(page)
        attempts = 1 + max(0, self.settings.page_retries)
        last_error = None

        for attempt in range(1, attempts + 1):
            self.limiter.acquire(stop_event)
            try:
                response = self.make_request(endpoint)
                return self.build_response(page, response)
            except requests.RequestException as e:
                last_error = PageFetchError(page, f"Request error: {e}")
            except PageFetchError as e:
                last_error = e

            if attempt < attempts:
                logger.warning(f"{last_error} (attempt {attempt}/{attempts}, retrying)")

        raise last_error

    def fetch_all(self, page_count: Optional[int] = None, stop_event=None) -> List[FetchedRecord]:
        """
        Fetch ``page_count`` pages in order and concatenate their records.

        Failed pages are logged and contribute nothing; they never abort
        the remaining pages. Setting ``stop_event`` (a threading.Event) ends
        the loop before the next request and returns what was fetched so far.
        """
        pages = self.settings.pages if page_count is None else page_count
        records: List[FetchedRecord] = []
        failed = 0

        for page in range(pages):
            if stop_event is not None and stop_event.is_set():
                logger.warning(f"Stop requested, fetch ended before page {page}")
                break

            try:
                page_records = self.fetch_page(page, stop_event)
            except AcquireCancelled:
                logger.warning(f"Stop requested, fetch ended before page {page}")
                break
            except PageFetchError as e:
                logger.error(str(e))
                failed += 1
                continue

            logger.debug(f"Page {page} returned {len(page_records)} coins")
            records.extend(page_records)

        logger.info(f"Fetched {len(records)} coins from {pages - failed}/{pages} pages")
        return records
