"""
NCBI Taxonomy client built on the E-utilities web API.

Resolves scientific names to NCBI taxon identifiers together with their
full ranked lineage, and lists the descendants of a taxon at a given rank
(used to expand e.g. an order into its species).
"""

from __future__ import annotations

import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Self

import httpx

from supersmart.core.exceptions import SupersmartError
from supersmart.models.taxonomy import Rank

logger = logging.getLogger(__name__)

EUTILS_BASE = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_RETRY_BACKOFF = 2.0
DEFAULT_BATCH_SIZE = 200


class NCBITaxonomyError(SupersmartError):
    """A request to the NCBI E-utilities could not be completed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        if status_code == 429:
            hint = "Rate limited by NCBI. Lower the number of workers or set NCBI_API_KEY."
        elif status_code is not None and status_code >= 500:
            hint = "The NCBI servers are failing; retry the taxize stage later."
        else:
            hint = "Make sure eutils.ncbi.nlm.nih.gov is reachable from this machine."
        super().__init__(message=message, suggestion=hint)


@dataclass(frozen=True)
class LineageEntry:
    taxon_id: str
    name: str
    rank: str


@dataclass(frozen=True)
class TaxonRecord:
    """A resolved NCBI taxon with its lineage.

    Attributes:
        taxon_id: NCBI taxon identifier.
        name: Scientific name.
        rank: NCBI rank name (``no rank`` for unranked nodes).
        lineage: Ancestors from the root down, excluding the taxon itself.
    """

    taxon_id: str
    name: str
    rank: str
    lineage: tuple[LineageEntry, ...] = ()

    def to_record(self) -> dict[str, str | None]:
        """Row for the taxa table: name, one id per rank and display names."""
        row: dict[str, str | None] = {"name": self.name}
        for entry in (*self.lineage, LineageEntry(self.taxon_id, self.name, self.rank)):
            rank = Rank.parse(entry.rank)
            if rank is None:
                continue
            row[rank.value] = entry.taxon_id
            row[f"{rank.value}_name"] = entry.name
        return row


class NCBITaxonomyClient:
    """Client for NCBI taxonomy lookups.

    Attributes:
        timeout: Request timeout in seconds
        api_key: Optional NCBI API key (raises the rate limit)
    """

    def __init__(
        self,
        timeout: float = 60.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        api_key: str | None = None,
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_backoff = retry_backoff
        self.api_key = api_key
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(base_url=EUTILS_BASE, timeout=self.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __del__(self) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def search(self, term: str, retmax: int = 20) -> list[str]:
        """Run an ``esearch`` on the taxonomy database and return taxon ids."""
        params = {"db": "taxonomy", "term": term, "retmode": "json", "retmax": str(retmax)}
        response = self._get("/esearch.fcgi", params)
        data: Any = response.json()
        return list(data.get("esearchresult", {}).get("idlist", []))

    def fetch(self, taxon_ids: list[str]) -> list[TaxonRecord]:
        """Fetch full records (with lineage) for the given taxon ids."""
        records: list[TaxonRecord] = []
        for start in range(0, len(taxon_ids), DEFAULT_BATCH_SIZE):
            batch = taxon_ids[start:start + DEFAULT_BATCH_SIZE]
            params = {"db": "taxonomy", "id": ",".join(batch), "retmode": "xml"}
            response = self._get("/efetch.fcgi", params)
            records.extend(parse_taxa_xml(response.text))
        return records

    def resolve(self, name: str) -> TaxonRecord | None:
        """
        Resolve a scientific name to a taxon record.

        Returns None (and logs) when the name is unknown. Ambiguous names
        resolve to the first hit, with a warning.
        """
        ids = self.search(f'"{name}"[Scientific Name]')
        if not ids:
            logger.warning("Couldn't resolve name '%s'", name)
            return None
        if len(ids) > 1:
            logger.warning("Name '%s' is ambiguous (%d hits), using taxon %s", name, len(ids), ids[0])
        records = self.fetch(ids[:1])
        return records[0] if records else None

    def expand(self, taxon_id: str, rank: Rank = Rank.SPECIES, retmax: int = 10_000) -> list[TaxonRecord]:
        """All descendants of ``taxon_id`` at ``rank``."""
        ids = self.search(f"txid{taxon_id}[Subtree] AND {rank.value}[Rank]", retmax=retmax)
        logger.info("Taxon %s has %d descendants at rank %s", taxon_id, len(ids), rank.value)
        return self.fetch(ids) if ids else []

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _get(self, endpoint: str, params: dict[str, str]) -> httpx.Response:
        """
        GET ``endpoint``, retrying rate limits, server errors and dropped
        connections with exponential backoff.

        A ``Retry-After`` header on a 429 overrides the current delay. Other
        4xx answers fail at once with NCBITaxonomyError, as does the final
        failed attempt.
        """
        client = self._get_client()
        if self.api_key:
            params = {**params, "api_key": self.api_key}
        attempts = self.max_retries + 1
        delay = self.retry_delay
        status: int | None = None
        reason: object = None
        error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = client.get(endpoint, params=params)
                response.raise_for_status()
                return response
            except (httpx.HTTPStatusError, httpx.RequestError) as exc:
                error = exc
                if isinstance(exc, httpx.HTTPStatusError):
                    status = exc.response.status_code
                    if not _transient_status(status):
                        raise NCBITaxonomyError(f"NCBI request failed: {status}", status_code=status) from exc
                    delay = float(exc.response.headers.get("Retry-After") or delay)
                    reason = status
                else:
                    status = None
                    reason = exc
            if attempt == attempts:
                break
            logger.warning(
                "NCBI request to %s failed (%s), attempt %d of %d; waiting %.1fs",
                endpoint, reason, attempt, attempts, delay,
            )
            time.sleep(delay)
            delay *= self.retry_backoff

        raise NCBITaxonomyError(
            f"NCBI request failed after {attempts} attempts: {reason}",
            status_code=status,
        ) from error


def _transient_status(status: int) -> bool:
    return status == 429 or status >= 500


def parse_taxa_xml(text: str) -> list[TaxonRecord]:
    """Parse an ``efetch`` TaxaSet document into taxon records."""
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise NCBITaxonomyError(f"Malformed taxonomy XML from NCBI: {e}") from e

    records = []
    for taxon in root.findall("Taxon"):
        lineage = tuple(
            LineageEntry(
                taxon_id=node.findtext("TaxId", ""),
                name=node.findtext("ScientificName", ""),
                rank=node.findtext("Rank", "no rank"),
            )
            for node in taxon.findall("LineageEx/Taxon")
        )
        records.append(
            TaxonRecord(
                taxon_id=taxon.findtext("TaxId", ""),
                name=taxon.findtext("ScientificName", ""),
                rank=taxon.findtext("Rank", "no rank"),
                lineage=lineage,
            )
        )
    return records
