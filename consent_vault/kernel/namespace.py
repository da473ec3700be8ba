# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Namespace Helper — Partition and key naming.

A tenant partition is named <prefix><tenant_id> (e.g. tenant_db_ABC123).
All Redis keys of that partition start with the partition name:

    {partition}:{collection}                               documents (hash)
    {partition}:{collection}:claim:{logical_id}:{version}  next-version claim
    {partition}:{collection}:consumed                      single-use markers (hash)
"""

from __future__ import annotations

from typing import Optional


def partition_name(prefix: str, tenant_id: str) -> str:
    """
    Build a tenant partition name.

    Example:
        partition_name("tenant_db_", "ABC123") -> "tenant_db_ABC123"
    """
    return f"{prefix}{tenant_id}"


def tenant_from_partition(prefix: str, name: str) -> Optional[str]:
    """
    Strip the prefix from a partition name; None if it is not a tenant partition.

    Example:
        tenant_from_partition("tenant_db_", "tenant_db_ABC123") -> "ABC123"
    """
    if not name.startswith(prefix) or len(name) == len(prefix):
        return None
    return name[len(prefix):]


def collection_key(partition: str, collection: str) -> str:
    """
    Example:
        collection_key("tenant_db_A", "consents") -> "tenant_db_A:consents"
    """
    return f"{partition}:{collection}"


def claim_key(partition: str, collection: str, logical_id: str, version: int) -> str:
    """
    Example:
        claim_key("tenant_db_A", "consents", "c1", 3) -> "tenant_db_A:consents:claim:c1:3"
    """
    return f"{partition}:{collection}:claim:{logical_id}:{version}"


def consumed_key(partition: str, collection: str) -> str:
    """
    Example:
        consumed_key("tenant_db_A", "cookie_consent_handles")
            -> "tenant_db_A:cookie_consent_handles:consumed"
    """
    return f"{partition}:{collection}:consumed"
