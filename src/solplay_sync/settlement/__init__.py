"""Chunk-view tracking, fee policy and settlement reconciliation."""
