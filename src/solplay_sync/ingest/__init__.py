"""Ingestion: instruction decoding, event dispatch, mirror handlers and the polling/subscription loop."""
