"""Clients for remote taxonomy services."""

from supersmart.clients.ncbi_taxonomy import (
    NCBITaxonomyClient,
    NCBITaxonomyError,
    TaxonRecord,
)

__all__ = ["NCBITaxonomyClient", "NCBITaxonomyError", "TaxonRecord"]
