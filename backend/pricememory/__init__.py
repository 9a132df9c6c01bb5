"""Quotation email ingestion and historical price memory."""
