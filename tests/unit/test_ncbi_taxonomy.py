"""Unit tests for the NCBI Taxonomy client.

Tests XML parsing, name resolution, descendant expansion and the retry
logic using a mocked httpx client; no request leaves the machine.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest

from supersmart.clients.ncbi_taxonomy import (
    LineageEntry,
    NCBITaxonomyClient,
    NCBITaxonomyError,
    TaxonRecord,
    parse_taxa_xml,
)
from supersmart.models.taxonomy import Rank

HOMO_SAPIENS_XML = """<?xml version="1.0" ?>
<TaxaSet>
  <Taxon>
    <TaxId>9606</TaxId>
    <ScientificName>Homo sapiens</ScientificName>
    <Rank>species</Rank>
    <LineageEx>
      <Taxon><TaxId>1</TaxId><ScientificName>root</ScientificName><Rank>no rank</Rank></Taxon>
      <Taxon><TaxId>9443</TaxId><ScientificName>Primates</ScientificName><Rank>order</Rank></Taxon>
      <Taxon><TaxId>9604</TaxId><ScientificName>Hominidae</ScientificName><Rank>family</Rank></Taxon>
      <Taxon><TaxId>9605</TaxId><ScientificName>Homo</ScientificName><Rank>genus</Rank></Taxon>
    </LineageEx>
  </Taxon>
</TaxaSet>
"""


def _json_response(payload: dict) -> MagicMock:
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


def _text_response(text: str) -> MagicMock:
    response = MagicMock()
    response.text = text
    response.raise_for_status = MagicMock()
    return response


def _status_error(status_code: int, headers: dict[str, str] | None = None) -> httpx.HTTPStatusError:
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.headers = headers or {}
    return httpx.HTTPStatusError(
        f"HTTP {status_code}", request=MagicMock(spec=httpx.Request), response=response,
    )


def _client_with(ids: list[str], xml: str = HOMO_SAPIENS_XML, **kwargs) -> tuple[NCBITaxonomyClient, MagicMock]:
    """Client whose esearch returns ``ids`` and whose efetch returns ``xml``."""
    responses = {
        "/esearch.fcgi": _json_response({"esearchresult": {"idlist": ids}}),
        "/efetch.fcgi": _text_response(xml),
    }
    http = MagicMock(spec=httpx.Client)
    http.get.side_effect = lambda endpoint, params: responses[endpoint]
    client = NCBITaxonomyClient(retry_delay=0.01, **kwargs)
    client._client = http
    return client, http


# =========================================================================
# Parsing
# =========================================================================


class TestParseTaxaXml:
    """Tests for efetch XML parsing."""

    def test_record_and_lineage(self):
        records = parse_taxa_xml(HOMO_SAPIENS_XML)

        assert len(records) == 1
        record = records[0]
        assert record.taxon_id == "9606"
        assert record.rank == "species"
        assert [e.name for e in record.lineage] == ["root", "Primates", "Hominidae", "Homo"]

    def test_to_record_fills_known_ranks(self):
        row = parse_taxa_xml(HOMO_SAPIENS_XML)[0].to_record()

        assert row["name"] == "Homo sapiens"
        assert row["order"] == "9443"
        assert row["family"] == "9604"
        assert row["genus"] == "9605"
        assert row["genus_name"] == "Homo"
        assert row["species"] == "9606"
        assert "no rank" not in row

    def test_malformed_xml(self):
        with pytest.raises(NCBITaxonomyError, match="Malformed taxonomy XML"):
            parse_taxa_xml("<TaxaSet><Taxon>")

    def test_empty_set(self):
        assert parse_taxa_xml("<TaxaSet/>") == []


# =========================================================================
# Lookups
# =========================================================================


class TestLookups:
    """Tests for resolve and expand."""

    def test_resolve(self):
        client, http = _client_with(["9606"])

        record = client.resolve("Homo sapiens")

        assert record is not None
        assert record.name == "Homo sapiens"
        search_params = http.get.call_args_list[0].kwargs["params"]
        assert search_params["term"] == '"Homo sapiens"[Scientific Name]'

    def test_unknown_name(self, caplog):
        client, http = _client_with([])

        assert client.resolve("Nonexistus") is None
        assert "Couldn't resolve name 'Nonexistus'" in caplog.text
        assert http.get.call_count == 1

    def test_ambiguous_name_uses_first_hit(self, caplog):
        client, http = _client_with(["9606", "1234"])

        record = client.resolve("Homo sapiens")

        assert record.taxon_id == "9606"
        assert "ambiguous" in caplog.text
        assert http.get.call_args_list[1].kwargs["params"]["id"] == "9606"

    def test_expand(self):
        client, http = _client_with(["9606"])

        records = client.expand("9604", Rank.SPECIES)

        assert [r.taxon_id for r in records] == ["9606"]
        term = http.get.call_args_list[0].kwargs["params"]["term"]
        assert term == "txid9604[Subtree] AND species[Rank]"

    def test_expand_without_descendants(self):
        client, http = _client_with([])

        assert client.expand("9604") == []
        assert http.get.call_count == 1

    def test_api_key_is_sent(self):
        client, http = _client_with(["9606"], api_key="secret")

        client.search("Homo")

        assert http.get.call_args.kwargs["params"]["api_key"] == "secret"


# =========================================================================
# Retries
# =========================================================================


class TestRetryLogic:
    """Tests for the GET retry mechanism."""

    def _client(self, side_effect, max_retries: int = 2) -> tuple[NCBITaxonomyClient, MagicMock]:
        http = MagicMock(spec=httpx.Client)
        http.get.side_effect = side_effect
        client = NCBITaxonomyClient(max_retries=max_retries, retry_delay=0.01)
        client._client = http
        return client, http

    def test_retry_on_server_error(self):
        ok = _json_response({"esearchresult": {"idlist": ["1"]}})
        client, http = self._client([_status_error(503), ok])

        with patch("supersmart.clients.ncbi_taxonomy.time.sleep"):
            assert client.search("x") == ["1"]
        assert http.get.call_count == 2

    def test_no_retry_on_client_error(self):
        client, http = self._client(_status_error(400))

        with pytest.raises(NCBITaxonomyError) as excinfo:
            client.search("x")

        assert excinfo.value.status_code == 400
        assert http.get.call_count == 1

    def test_rate_limit_honours_retry_after(self):
        ok = _json_response({"esearchresult": {"idlist": []}})
        client, _ = self._client([_status_error(429, {"Retry-After": "5"}), ok])

        with patch("supersmart.clients.ncbi_taxonomy.time.sleep") as sleep:
            client.search("x")

        sleep.assert_called_once_with(5.0)

    def test_connection_errors_exhaust_retries(self):
        client, http = self._client(httpx.RequestError("Connection refused"))

        with patch("supersmart.clients.ncbi_taxonomy.time.sleep"):
            with pytest.raises(NCBITaxonomyError, match="after 3 attempts"):
                client.search("x")
        assert http.get.call_count == 3

    def test_rate_limit_suggestion(self):
        error = NCBITaxonomyError("NCBI request failed: 429", status_code=429)

        assert "Rate limited" in error.suggestion


class TestClientLifecycle:
    """Tests for the context manager."""

    def test_close_on_exit(self):
        http = MagicMock(spec=httpx.Client)
        with NCBITaxonomyClient() as client:
            client._client = http

        http.close.assert_called_once()
        assert client._client is None

    def test_record_is_frozen(self):
        record = TaxonRecord("1", "x", "species", (LineageEntry("2", "y", "genus"),))
        with pytest.raises(AttributeError):
            record.name = "z"
