"""Partitioned storage maintenance: incremental sync, grouping and migration."""
