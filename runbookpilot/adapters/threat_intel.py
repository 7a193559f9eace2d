"""VirusTotal threat-intelligence adapter.

Reference integration exercising the whole adapter contract:
- enrich_ioc: detection ratio, threat label and tags for a hash/domain/ip/url
- check_reputation: reputation score and the four detection buckets
- query_threat_feed: hunting notification feed, optionally filtered
- calculate_hash: local digest of supplied data, never touches the network
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from runbookpilot.adapters.base import BaseAdapter
from runbookpilot.adapters.errors import (
    AdapterOperationError,
    TransportError,
    UpstreamAPIError,
    api_error_code,
)
from runbookpilot.adapters.models import (
    AdapterConfig,
    Capabilities,
    HealthState,
    HealthStatus,
)
from runbookpilot.adapters.resilience import CircuitBreaker, Clock, RateLimiter, Sleep
from runbookpilot.adapters.validation import ParameterRule

logger = structlog.get_logger()

DEFAULT_BASE_URL = "https://www.virustotal.com/api/v3"

# Public API quota: 4 requests per minute
RATE_LIMIT_INTERVAL = 15.0

HEALTH_CHECK_TIMEOUT = 10.0


# =============================================================================
# Action and parameter enums
# =============================================================================


class ThreatIntelAction(str, Enum):
    """Actions offered by the threat-intel adapter."""

    ENRICH_IOC = "enrich_ioc"
    CHECK_REPUTATION = "check_reputation"
    QUERY_THREAT_FEED = "query_threat_feed"
    CALCULATE_HASH = "calculate_hash"


class IocType(str, Enum):
    """Indicator kinds, each with its own lookup endpoint."""

    HASH = "hash"
    DOMAIN = "domain"
    IP = "ip"
    URL = "url"


class HashAlgorithm(str, Enum):
    """Digest algorithms accepted by calculate_hash."""

    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"


# =============================================================================
# Response schemas
# =============================================================================


def _none_to_zero(v: Any) -> Any:
    return 0 if v is None else v


class AnalysisStats(BaseModel):
    """Detection buckets from ``last_analysis_stats``; missing buckets count as 0."""

    model_config = ConfigDict(extra="ignore")

    malicious: int = 0
    suspicious: int = 0
    harmless: int = 0
    undetected: int = 0

    @field_validator("malicious", "suspicious", "harmless", "undetected", mode="before")
    @classmethod
    def default_zero(cls, v: Any) -> Any:
        return _none_to_zero(v)

    @property
    def total(self) -> int:
        return self.malicious + self.suspicious + self.harmless + self.undetected

    @property
    def score(self) -> float:
        if self.total == 0:
            return 0.0
        return self.malicious / self.total


class ThreatClassification(BaseModel):
    """Subset of ``popular_threat_classification``."""

    model_config = ConfigDict(extra="ignore")

    suggested_threat_label: str | None = None


class ObjectAttributes(BaseModel):
    """Attributes shared by file, domain, IP and URL objects."""

    model_config = ConfigDict(extra="ignore")

    last_analysis_stats: AnalysisStats = Field(default_factory=AnalysisStats)
    popular_threat_classification: ThreatClassification | None = None
    reputation: int = 0
    last_analysis_date: int | None = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("last_analysis_stats", mode="before")
    @classmethod
    def default_stats(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("reputation", mode="before")
    @classmethod
    def default_reputation(cls, v: Any) -> Any:
        return _none_to_zero(v)

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def threat_label(self) -> str:
        classification = self.popular_threat_classification
        if classification and classification.suggested_threat_label:
            return classification.suggested_threat_label
        return "unknown"

    @property
    def analysis_date_iso(self) -> str | None:
        if self.last_analysis_date is None:
            return None
        return datetime.fromtimestamp(self.last_analysis_date, tz=timezone.utc).isoformat()


class ObjectData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    attributes: ObjectAttributes = Field(default_factory=ObjectAttributes)

    @field_validator("attributes", mode="before")
    @classmethod
    def default_attributes(cls, v: Any) -> Any:
        return {} if v is None else v


class ObjectEnvelope(BaseModel):
    """Envelope returned by the object lookup endpoints."""

    model_config = ConfigDict(extra="ignore")

    data: ObjectData = Field(default_factory=ObjectData)

    @field_validator("data", mode="before")
    @classmethod
    def default_data(cls, v: Any) -> Any:
        return {} if v is None else v


class FeedItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    type: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("attributes", mode="before")
    @classmethod
    def default_attributes(cls, v: Any) -> Any:
        return {} if v is None else v


class FeedEnvelope(BaseModel):
    """Envelope returned by the hunting notification feed."""

    model_config = ConfigDict(extra="ignore")

    data: list[FeedItem] = Field(default_factory=list)

    @field_validator("data", mode="before")
    @classmethod
    def default_data(cls, v: Any) -> Any:
        return [] if v is None else v


# =============================================================================
# Simulation payloads
# =============================================================================

SIMULATED_ENRICHMENT: dict[str, Any] = {
    "detections": 12,
    "total_engines": 70,
    "threat_label": "trojan.generic/agent",
    "score": 12 / 70,
    "last_analysis_date": "2024-01-15T10:30:00+00:00",
    "tags": ["trojan", "agent", "windows"],
}

SIMULATED_REPUTATION: dict[str, Any] = {
    "reputation": -45,
    "harmless": 55,
    "malicious": 12,
    "suspicious": 3,
    "undetected": 0,
}

SIMULATED_NOTIFICATIONS: list[dict[str, Any]] = [
    {
        "id": "sim-notif-001",
        "type": "hunting_notification_file",
        "attributes": {
            "rule_name": "Cobalt Strike Beacon",
            "sha256": "a" * 64,
            "date": 1705314600,
        },
    },
    {
        "id": "sim-notif-002",
        "type": "hunting_notification_file",
        "attributes": {
            "rule_name": "Mimikatz Hash Match",
            "sha256": "b" * 64,
            "date": 1705318200,
        },
    },
]


# =============================================================================
# Adapter
# =============================================================================


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def compute_digest(data: str, algorithm: str = HashAlgorithm.SHA256.value) -> str:
    """Hex digest of ``data`` (UTF-8) under one of the allowed algorithms."""
    algorithm = HashAlgorithm(algorithm).value
    return hashlib.new(algorithm, data.encode("utf-8")).hexdigest()


def url_identifier(url: str) -> str:
    """URL-safe base64 of the raw URL without padding, as used by ``/urls/{id}``."""
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class VirusTotalAdapter(BaseAdapter):
    """Threat-intelligence enrichment against the VirusTotal v3 API.

    Example:
        adapter = VirusTotalAdapter()
        adapter.initialize(AdapterConfig(
            name="virustotal",
            type="enrichment",
            credentials=AdapterCredentials(values={"api_key": "..."}),
        ))
        result = await adapter.execute(
            "enrich_ioc", {"ioc": "8.8.8.8", "ioc_type": "ip"}, "production"
        )
    """

    default_name = "virustotal"
    version = "1.0.0"
    vendor = "VirusTotal"
    error_prefix = "VT"
    actions = ThreatIntelAction

    parameter_rules = {
        ThreatIntelAction.ENRICH_IOC.value: [
            ParameterRule("ioc", required=True),
            ParameterRule.choice("ioc_type", IocType, required=True),
        ],
        ThreatIntelAction.CHECK_REPUTATION.value: [
            ParameterRule("ioc", required=True),
            ParameterRule.choice("ioc_type", IocType, required=True),
        ],
        ThreatIntelAction.QUERY_THREAT_FEED.value: [],
        ThreatIntelAction.CALCULATE_HASH.value: [
            ParameterRule("data", required=True),
            ParameterRule.choice("algorithm", HashAlgorithm),
        ],
    }

    local_actions = frozenset({ThreatIntelAction.CALCULATE_HASH.value})

    capabilities = Capabilities(
        supports_simulation=True,
        supports_rollback=False,
        supports_validation=True,
        max_concurrency=4,
        supported_actions=frozenset(a.value for a in ThreatIntelAction),
    )

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        rate_limiter: RateLimiter | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the adapter.

        Args:
            transport: Optional httpx transport (e.g. MockTransport in tests)
            rate_limiter: Limiter to use instead of the default 15s spacing
            circuit_breaker: Optional breaker in front of production calls
            clock: Monotonic time source for the default rate limiter
            sleep: Awaitable sleep used for rate-limit waits and retry backoff
        """
        super().__init__(
            rate_limiter=rate_limiter or RateLimiter(RATE_LIMIT_INTERVAL, clock=clock, sleep=sleep),
            circuit_breaker=circuit_breaker,
            sleep=sleep,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._base_url = DEFAULT_BASE_URL
        self._api_key: str | None = None
        self.last_health_check: HealthStatus | None = None

        self._simulators: dict[ThreatIntelAction, Callable[[dict[str, Any]], dict[str, Any]]] = {
            ThreatIntelAction.ENRICH_IOC: self._simulate_enrichment,
            ThreatIntelAction.CHECK_REPUTATION: self._simulate_reputation,
            ThreatIntelAction.QUERY_THREAT_FEED: self._simulate_feed,
            ThreatIntelAction.CALCULATE_HASH: self._calculate_hash,
        }
        self._handlers: dict[
            ThreatIntelAction, Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]
        ] = {
            ThreatIntelAction.ENRICH_IOC: self._enrich_ioc,
            ThreatIntelAction.CHECK_REPUTATION: self._check_reputation,
            ThreatIntelAction.QUERY_THREAT_FEED: self._query_threat_feed,
            ThreatIntelAction.CALCULATE_HASH: self._calculate_hash_async,
        }

    @property
    def base_url(self) -> str:
        return self._base_url

    def initialize(self, config: AdapterConfig) -> None:
        super().initialize(config)
        base_url = config.setting("base_url") or config.setting("api_url") or DEFAULT_BASE_URL
        self._base_url = str(base_url).rstrip("/")
        self._api_key = config.credentials.get("api_key") if config.credentials else None

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        await super().shutdown()

    # =========================================================================
    # HTTP plumbing
    # =========================================================================

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(transport=self._transport)
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-apikey"] = self._api_key
        return headers

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def _get_json(self, path: str) -> Any:
        try:
            response = await self._http().get(
                self._url(path),
                headers=self._headers(),
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as e:
            self._logger.warning("virustotal_request_failed", path=path, error=_describe(e))
            raise TransportError(self.error_prefix, self.vendor, _describe(e)) from e

        if not response.is_success:
            self._logger.warning(
                "virustotal_api_error",
                path=path,
                status_code=response.status_code,
            )
            raise UpstreamAPIError(
                self.error_prefix, self.vendor, response.status_code, response.text
            )

        try:
            return response.json()
        except ValueError as e:
            raise AdapterOperationError(
                code=api_error_code(self.error_prefix),
                message=f"{self.vendor} returned a non-JSON body: {e}",
                status_code=response.status_code,
            ) from e

    def _parse(self, schema: type[BaseModel], payload: Any) -> Any:
        try:
            return schema.model_validate(payload if payload is not None else {})
        except ValidationError as e:
            raise AdapterOperationError(
                code=api_error_code(self.error_prefix),
                message=(
                    f"{self.vendor} returned an unexpected response: "
                    f"{e.error_count()} invalid field(s)"
                ),
            ) from e

    @staticmethod
    def object_path(ioc: str, ioc_type: str) -> str:
        """Lookup path for an indicator, relative to the API base."""
        kind = IocType(ioc_type)
        if kind == IocType.URL:
            return f"/urls/{url_identifier(ioc)}"
        prefixes = {
            IocType.HASH: "files",
            IocType.DOMAIN: "domains",
            IocType.IP: "ip_addresses",
        }
        return f"/{prefixes[kind]}/{quote(ioc, safe='')}"

    async def _lookup(self, params: dict[str, Any]) -> ObjectAttributes:
        path = self.object_path(str(params["ioc"]), IocType(params["ioc_type"]).value)
        envelope: ObjectEnvelope = self._parse(ObjectEnvelope, await self._get_json(path))
        return envelope.data.attributes

    # =========================================================================
    # Production handlers
    # =========================================================================

    async def _execute_production(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        return await self._handlers[ThreatIntelAction(action)](params)

    async def _enrich_ioc(self, params: dict[str, Any]) -> dict[str, Any]:
        attributes = await self._lookup(params)
        stats = attributes.last_analysis_stats
        return {
            "ioc": params["ioc"],
            "ioc_type": IocType(params["ioc_type"]).value,
            "detections": stats.malicious,
            "total_engines": stats.total,
            "threat_label": attributes.threat_label,
            "score": stats.score,
            "last_analysis_date": attributes.analysis_date_iso,
            "tags": list(attributes.tags),
        }

    async def _check_reputation(self, params: dict[str, Any]) -> dict[str, Any]:
        attributes = await self._lookup(params)
        stats = attributes.last_analysis_stats
        return {
            "ioc": params["ioc"],
            "ioc_type": IocType(params["ioc_type"]).value,
            "reputation": attributes.reputation,
            "harmless": stats.harmless,
            "malicious": stats.malicious,
            "suspicious": stats.suspicious,
            "undetected": stats.undetected,
        }

    async def _query_threat_feed(self, params: dict[str, Any]) -> dict[str, Any]:
        path = "/intelligence/hunting_notification_files"
        feed_filter = params.get("filter")
        if feed_filter:
            path = f"{path}?filter={quote(str(feed_filter), safe='')}"

        envelope: FeedEnvelope = self._parse(FeedEnvelope, await self._get_json(path))
        notifications = [item.model_dump() for item in envelope.data]
        return {"notifications": notifications, "count": len(notifications)}

    def _calculate_hash(self, params: dict[str, Any]) -> dict[str, Any]:
        algorithm = HashAlgorithm(params.get("algorithm") or HashAlgorithm.SHA256.value).value
        return {
            "hash": compute_digest(str(params.get("data", "")), algorithm),
            "algorithm": algorithm,
        }

    async def _calculate_hash_async(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._calculate_hash(params)

    # =========================================================================
    # Simulation
    # =========================================================================

    async def _simulate(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        output = self._simulators[ThreatIntelAction(action)](params)
        if action not in self.local_actions:
            output["simulated"] = True
        return output

    def _simulate_enrichment(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "ioc": params.get("ioc", ""),
            "ioc_type": _plain(params.get("ioc_type", IocType.HASH.value)),
            **SIMULATED_ENRICHMENT,
            "tags": list(SIMULATED_ENRICHMENT["tags"]),
        }

    def _simulate_reputation(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "ioc": params.get("ioc", ""),
            "ioc_type": _plain(params.get("ioc_type", IocType.HASH.value)),
            **SIMULATED_REPUTATION,
        }

    def _simulate_feed(self, params: dict[str, Any]) -> dict[str, Any]:
        notifications = [
            {**item, "attributes": dict(item["attributes"])} for item in SIMULATED_NOTIFICATIONS
        ]
        return {"notifications": notifications, "count": len(notifications)}

    # =========================================================================
    # Health
    # =========================================================================

    async def health_check(self) -> HealthStatus:
        """Probe ``GET /metadata`` once with the configured key."""
        if self._config is None:
            return HealthStatus(status=HealthState.UNKNOWN, message="Adapter not initialized")
        if not self._api_key:
            return HealthStatus(status=HealthState.UNHEALTHY, message="No API key configured")

        start = time.perf_counter()
        try:
            response = await self._http().get(
                self._url("/metadata"),
                headers=self._headers(),
                timeout=min(HEALTH_CHECK_TIMEOUT, self.config.timeout),
            )
        except httpx.HTTPError as e:
            latency_ms = (time.perf_counter() - start) * 1000
            self._logger.warning("virustotal_health_check_failed", error=_describe(e))
            status = HealthStatus(
                status=HealthState.UNHEALTHY,
                message=f"Health check failed: {_describe(e)}",
                latency_ms=latency_ms,
            )
        else:
            latency_ms = (time.perf_counter() - start) * 1000
            if response.status_code == 200:
                status = HealthStatus(
                    status=HealthState.HEALTHY,
                    message="VirusTotal API reachable",
                    latency_ms=latency_ms,
                )
            elif response.status_code == 429:
                status = HealthStatus(
                    status=HealthState.DEGRADED,
                    message="VirusTotal API rate limit reached",
                    latency_ms=latency_ms,
                )
            else:
                status = HealthStatus(
                    status=HealthState.UNHEALTHY,
                    message=f"VirusTotal API returned HTTP {response.status_code}",
                    latency_ms=latency_ms,
                )

        self.last_health_check = status
        return status
