"""Datasheet extraction service: cached uploads, schema-validated
model output and distributor API clients."""
