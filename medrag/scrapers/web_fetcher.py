"""
Fetcher for medical source pages
"""
from typing import List, Dict, Optional
import re
import logging
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from bs4 import BeautifulSoup

from ..models import RawDocument, SourceEntry, SourceSelectors

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

ALWAYS_REMOVED_TAGS = ["script", "style", "noscript", "template"]


class WebPageFetcher:
    """Retrieves one source page and extracts its text; never raises on fetch/parse failure"""

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 3,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize fetcher

        Args:
            timeout: Per-request timeout in seconds
            max_retries: Retries for 429/5xx responses (with backoff)
            user_agent: User-Agent header sent with every request
            session: Pre-built session (tests inject fakes here)
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.user_agent = user_agent
        self.session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic"""
        session = requests.Session()
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def fetch(self, source: SourceEntry) -> List[RawDocument]:
        """
        Fetch a source page and extract its text

        Returns:
            One RawDocument for the page, or an empty list on any network,
            timeout or parse failure
        """
        html = self.fetch_page(source.url)
        if not html:
            return []

        soup = self.parse_html(html)
        if soup is None:
            return []

        try:
            text = self.extract_text(soup, source.selectors)
        except Exception as e:
            logger.error(f"Error extracting content from {source.url}: {type(e).__name__} - {str(e)}")
            return []

        if not text:
            logger.warning(f"No text content extracted from {source.url}")
            return []

        return [RawDocument(text=text, url=source.url, metadata=source.metadata)]

    def fetch_page(self, url: str, headers: Optional[Dict] = None) -> Optional[str]:
        """
        Fetch a webpage with error handling

        Args:
            url: URL to fetch
            headers: Optional custom headers

        Returns:
            HTML content as string, or None if fetch failed
        """
        try:
            default_headers = {
                "User-Agent": self.user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
            }

            if headers:
                default_headers.update(headers)

            response = self.session.get(
                url,
                headers=default_headers,
                timeout=self.timeout
            )
            response.raise_for_status()

            logger.info(f"Successfully fetched: {url} ({len(response.content)} bytes)")
            return response.text

        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout fetching {url}: {str(e)}")
            return None
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            logger.error(f"HTTP error fetching {url}: {status} - {str(e)}")
            return None
        except requests.exceptions.RequestException as e:
            logger.error(f"Error fetching {url}: {type(e).__name__} - {str(e)}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error fetching {url}: {type(e).__name__} - {str(e)}")
            return None

    def parse_html(self, html: str) -> Optional[BeautifulSoup]:
        """Parse HTML content with BeautifulSoup, or None if parsing fails"""
        try:
            # Try lxml parser first (faster), fallback to html.parser
            try:
                return BeautifulSoup(html, 'lxml')
            except Exception:
                return BeautifulSoup(html, 'html.parser')
        except Exception as e:
            logger.error(f"Error parsing HTML: {type(e).__name__} - {str(e)}")
            return None

    def extract_text(self, soup: BeautifulSoup, selectors: Optional[SourceSelectors] = None) -> str:
        """Extract page text, optionally scoped to a content selector minus excluded regions"""
        for tag in soup(ALWAYS_REMOVED_TAGS):
            tag.decompose()

        if selectors:
            for pattern in selectors.exclude:
                for elem in soup.select(pattern):
                    elem.decompose()

        roots = []
        if selectors and selectors.content:
            roots = soup.select(selectors.content)
            if not roots:
                logger.warning(f"Content selector '{selectors.content}' matched nothing; using whole page")

        if not roots:
            body = soup.find('body')
            roots = [body if body is not None else soup]

        parts = [root.get_text(separator='\n', strip=True) for root in roots]
        return _normalize_whitespace('\n\n'.join(p for p in parts if p))


def _normalize_whitespace(text: str) -> str:
    lines = [re.sub(r'[ \t ]+', ' ', line).strip() for line in text.splitlines()]
    text = '\n'.join(lines)
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()
