# oracle_gateway/services/fetcher.py
"""
Cached, circuit-breaker-protected failover across upstream data sources.

FailoverFetcher consults the ResponseCache first. On a miss it tries the
SourceRegistry's sources one at a time, best first, and returns the first
successful result. Failures feed the circuit breaker; if every source fails
(or is skipped because its breaker is open) the caller gets
AllSourcesExhausted with the last underlying error attached.

The fetcher is the only writer of source health and of the response cache.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Type

import requests
from pydantic import BaseModel, TypeAdapter, ValidationError
from requests.exceptions import RequestException, Timeout

from oracle_gateway.api.models.exploit import ExploitRecord
from oracle_gateway.core.config import settings
from oracle_gateway.core.errors import AllSourcesExhausted, CircuitOpen, InvalidUpstreamResponse
from oracle_gateway.services.response_cache import ResponseCache, normalize_query, query_signature
from oracle_gateway.services.sources import DataSource, SourceRegistry

logger = logging.getLogger(__name__)

USER_AGENT = "Security-Oracle-Gateway/3.0"


class FailoverFetcher:
    """
    Args:
        registry: The upstream sources and their breaker state.
        cache: Memo of successful results.
        request_timeout: Per-attempt timeout in seconds.
        deadline: Default overall budget for one fetch, in seconds.
        monotonic: Clock used for deadline accounting (injectable for tests).
    """

    def __init__(
        self,
        registry: SourceRegistry,
        cache: ResponseCache,
        request_timeout: Optional[float] = None,
        deadline: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.cache = cache
        self.request_timeout = request_timeout if request_timeout is not None else settings.SOURCE_REQUEST_TIMEOUT_SECONDS
        self.deadline = deadline if deadline is not None else settings.FETCH_DEADLINE_SECONDS
        self._monotonic = monotonic

    def fetch(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        deadline: Optional[float] = None,
        record_model: Optional[Type[BaseModel]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch ``path`` with ``params`` from the first source that answers.

        Args:
            path: Upstream resource, e.g. "exploits". The response must be a
                JSON object holding the records under the same key.
            params: Query parameters (defaults applied, None values dropped).
            deadline: Overall time budget in seconds for this call. An attempt
                cut short by this budget does not count against the source.
            record_model: Optional schema every record must satisfy. A source
                returning a record that fails it is treated as failed.

        Returns:
            The list of records.

        Raises:
            AllSourcesExhausted: Every source failed or was skipped, or the
                deadline ran out.
        """
        key = query_signature(path, params)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit: {key}")
            return cached

        query = normalize_query(params)
        budget = deadline if deadline is not None else self.deadline
        started = self._monotonic()
        last_error: Optional[BaseException] = None

        for source in self.registry.attempt_order():
            remaining = budget - (self._monotonic() - started)
            if remaining <= 0:
                raise AllSourcesExhausted("Fetch deadline exceeded", last_error=last_error or Timeout("deadline exceeded"))

            attempt_timeout = min(self.request_timeout, remaining)
            bounded_by_deadline = remaining < self.request_timeout
            attempt_started = self._monotonic()

            try:
                data = self._fetch_from_source(source, path, query, attempt_timeout, record_model)
            except Timeout as e:
                if bounded_by_deadline:
                    logger.warning(f"Fetch deadline reached while waiting on {source.name}")
                    raise AllSourcesExhausted("Fetch deadline exceeded", last_error=e) from e
                self._handle_source_failure(source, e)
                last_error = e
                continue
            except (RequestException, ValueError, InvalidUpstreamResponse) as e:
                self._handle_source_failure(source, e)
                last_error = e
                continue

            duration_ms = int((self._monotonic() - attempt_started) * 1000)
            self.registry.record_success(source.name)
            self.cache.put(key, data)
            logger.info(f"Data fetch from {source.name}: {len(data)} records in {duration_ms}ms")
            return data

        if last_error is None:
            open_sources = ", ".join(s.name for s in self.registry.skipped())
            last_error = CircuitOpen(f"Circuit breaker open for: {open_sources}")

        logger.error(f"All data sources unavailable for {key}: {last_error}")
        raise AllSourcesExhausted("All data sources unavailable", last_error=last_error) from last_error

    def fetch_exploits(
        self,
        protocol: Optional[str] = None,
        chain: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        return self.fetch(
            "exploits",
            {"protocol": protocol, "chain": chain},
            deadline=deadline,
            record_model=ExploitRecord,
        )

    def _fetch_from_source(
        self,
        source: DataSource,
        path: str,
        query: Mapping[str, Any],
        timeout: float,
        record_model: Optional[Type[BaseModel]] = None,
    ) -> List[Dict[str, Any]]:
        result_key = path.strip("/").split("/")[-1]
        response = requests.get(
            f"{source.endpoint}/{path.strip('/')}",
            params=dict(query),
            timeout=timeout,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        )
        response.raise_for_status()

        data = response.json()
        if not isinstance(data, dict) or not isinstance(data.get(result_key), list):
            raise InvalidUpstreamResponse(f"Invalid response format from data source {source.name}")

        records = data[result_key]
        if not all(isinstance(r, dict) for r in records):
            raise InvalidUpstreamResponse(f"Non-object record from data source {source.name}")

        if record_model is not None:
            try:
                TypeAdapter(List[record_model]).validate_python(records)
            except ValidationError as e:
                raise InvalidUpstreamResponse(
                    f"Invalid record from data source {source.name}",
                    details=f"{e.error_count()} validation error(s)",
                ) from e

        return records

    def _handle_source_failure(self, source: DataSource, error: BaseException) -> None:
        logger.error(f"Data source failure: {source.name}: {error}")
        self.registry.record_failure(source.name)
        logger.warning(f"Failing over from {source.name}")

    # --- Introspection for /health ---

    def sources_health(self) -> List[Dict[str, Any]]:
        return self.registry.health()

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()


def build_fetcher(clock: Callable[[], float] = time.time) -> FailoverFetcher:
    """Construct a FailoverFetcher, its registry and its cache from settings."""
    return FailoverFetcher(
        registry=SourceRegistry.from_config(settings.DATA_SOURCES, clock=clock),
        cache=ResponseCache(settings.RESPONSE_CACHE_TTL_SECONDS, clock=clock),
    )
