"""Chunked file uploads with exactly-once reassembly."""
