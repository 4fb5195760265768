"""
Domain logic for the CRAN package index.

This package is responsible for:
* The records that flow through ingestion and the rows persisted for them.
* Parsing the CRAN package index and per-package DESCRIPTION files.
* Reconciling authors and maintainers against the authors table.
"""
