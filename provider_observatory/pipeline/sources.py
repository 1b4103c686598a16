"""
External data sources for the acquisition pipeline.

Each fetcher makes one bounded request and always returns a value: when
the source fails, the result carries an explicit unavailable or empty
shape with the cause, never a made-up number.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..config.loader import POLYGON_API_KEY_ENV, PipelineConfig

logger = logging.getLogger(__name__)

MAX_LITIGATION_CASES = 10
MAX_FEED_ENTRIES = 20
SIGNIFICANT_FORM_MARKER = "10-"

_ENTRY_RE = re.compile(r"<entry>(.*?)</entry>", re.DOTALL)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


@dataclass(frozen=True)
class StockSnapshot:
    """Previous-day aggregate for one ticker."""
    symbol: str
    price: Optional[float]
    change: Optional[float]
    change_percent: Optional[float]
    volume: Optional[float]
    timestamp: int
    source: str  # "polygon" or "unavailable"
    error: Optional[str] = None

    @classmethod
    def unavailable(cls, symbol: str, error: str, source: str = "unavailable") -> "StockSnapshot":
        return cls(symbol, None, None, None, None, _now_ms(), source, error)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "volume": self.volume,
            "timestamp": self.timestamp,
            "source": self.source,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class LitigationCase:
    docket_number: str
    case_name: str
    court: str
    date_filed: str
    url: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "docketNumber": self.docket_number,
            "caseName": self.case_name,
            "court": self.court,
            "dateFiled": self.date_filed,
            "url": self.url,
        }


@dataclass(frozen=True)
class LitigationSummary:
    """Docket search result for one company name."""
    query: str
    count: int
    date: str
    source: str = "courtlistener"
    cases: List[LitigationCase] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "count": self.count,
            "date": self.date,
            "source": self.source,
            "cases": [case.to_dict() for case in self.cases],
        }


@dataclass(frozen=True)
class SecFiling:
    filing_date: str
    form_type: str
    company: str
    mentions: int
    url: str
    cik: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filingDate": self.filing_date,
            "formType": self.form_type,
            "company": self.company,
            "mentions": self.mentions,
            "url": self.url,
            "cik": self.cik,
        }


async def fetch_stock_snapshot(client: httpx.AsyncClient, config: PipelineConfig) -> StockSnapshot:
    """Fetch the previous-day aggregate for the configured ticker.

    A missing credential is an expected outcome: no request is made and an
    unavailable snapshot explains why.
    """
    symbol = config.ticker
    if not config.polygon_api_key:
        return StockSnapshot.unavailable(
            symbol, f"API key not configured. Set {POLYGON_API_KEY_ENV} in environment variables."
        )

    try:
        response = await client.get(
            f"{config.polygon_base_url}/v2/aggs/ticker/{symbol}/prev",
            params={"apiKey": config.polygon_api_key},
            timeout=config.request_timeout,
        )
        if not response.is_success:
            return StockSnapshot.unavailable(symbol, f"Polygon API error: {response.status_code}")

        results = response.json().get("results") or []
        if not results:
            return StockSnapshot.unavailable(symbol, "No data returned from Polygon API", source="polygon")

        result = results[0]
        close, open_ = result["c"], result["o"]
        change = close - open_
        return StockSnapshot(
            symbol=symbol,
            price=close,
            change=change,
            change_percent=(change / open_) * 100 if open_ else None,
            volume=result.get("v"),
            timestamp=_now_ms(),
            source="polygon",
        )
    except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning("Stock snapshot for %s unavailable: %s", symbol, e)
        return StockSnapshot.unavailable(symbol, str(e) or type(e).__name__)


async def fetch_litigation_summary(client: httpx.AsyncClient, config: PipelineConfig) -> LitigationSummary:
    """Search the docket API for the configured company name.

    Any failure yields a zero-count summary for today.
    """
    query = config.litigation_query
    try:
        response = await client.get(
            f"{config.courtlistener_base_url}/api/rest/v3/search/",
            params={"q": query, "type": "r", "order_by": "dateFiled desc"},
            headers={"Accept": "application/json"},
            timeout=config.request_timeout,
        )
        response.raise_for_status()
        data = response.json()

        cases = [
            LitigationCase(
                docket_number=result.get("docketNumber") or "N/A",
                case_name=result.get("caseName") or "Unknown",
                court=result.get("court") or "Unknown",
                date_filed=result.get("dateFiled") or "Unknown",
                url=f"{config.courtlistener_base_url}{result.get('absolute_url') or ''}",
            )
            for result in (data.get("results") or [])[:MAX_LITIGATION_CASES]
        ]
        count = data.get("count") or 0
        return LitigationSummary(
            query=query,
            count=count if isinstance(count, int) else 0,
            date=_today(),
            cases=cases,
        )
    except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
        logger.warning("Litigation search for %s failed: %s", query, e)
        return LitigationSummary(query=query, count=0, date=_today())


def _field(pattern: str, entry: str, default: str) -> str:
    match = re.search(pattern, entry)
    return match.group(1) if match and match.group(1) else default


def count_mentions(text: str, term: str) -> int:
    """Case-insensitive count of a literal term in text."""
    if not term:
        return 0
    return len(re.findall(re.escape(term), text, re.IGNORECASE))


def extract_filings(feed: str, search_term: str, default_company: str, default_cik: str) -> List[SecFiling]:
    """Extract filings from an EDGAR Atom feed by field-level matching.

    Tolerant of missing fields, each falling back to a fixed value. An
    entry is kept if it mentions the search term or is a 10-K/10-Q style
    periodic filing.

    Args:
        feed: Raw feed text
        search_term: Term counted case-insensitively in each raw entry
        default_company: Company used when an entry has none
        default_cik: CIK used when an entry has none

    Returns:
        Retained filings in feed order
    """
    filings = []
    for entry in _ENTRY_RE.findall(feed)[:MAX_FEED_ENTRIES]:
        form_type = _field(r"<filing-type>(.*?)</filing-type>", entry, "")
        mentions = count_mentions(entry, search_term)
        if mentions == 0 and SIGNIFICANT_FORM_MARKER not in form_type:
            continue
        filings.append(SecFiling(
            filing_date=_field(r"<filing-date>(.*?)</filing-date>", entry, ""),
            form_type=form_type,
            company=_field(r"<company-name>(.*?)</company-name>", entry, default_company),
            mentions=mentions,
            url=_field(r"<filing-href>(.*?)</filing-href>", entry, ""),
            cik=_field(r"<cik>(.*?)</cik>", entry, default_cik),
        ))
    return filings


async def fetch_sec_filings(client: httpx.AsyncClient, config: PipelineConfig) -> List[SecFiling]:
    """Fetch the issuer's filing feed and extract relevant filings.

    Any failure yields an empty list.
    """
    try:
        response = await client.get(
            f"{config.sec_base_url}/cgi-bin/browse-edgar",
            params={
                "action": "getcompany",
                "CIK": config.sec_cik,
                "type": "",
                "dateb": "",
                "owner": "exclude",
                "count": "40",
                "output": "atom",
            },
            headers={
                "User-Agent": config.user_agent,
                "Accept": "application/atom+xml",
            },
            timeout=config.request_timeout,
        )
        if not response.is_success:
            logger.warning("SEC feed returned HTTP %s", response.status_code)
            return []
        return extract_filings(response.text, config.search_term, config.sec_company, config.sec_cik)
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("SEC filings fetch failed: %s", e)
        return []
