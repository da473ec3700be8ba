# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
ConsentVault — Multi-tenant consent/template record store.

Every logical entity (template, consent) keeps a version history in its
tenant's partition, with exactly one ACTIVE version at a time.
"""

__version__ = "0.1.0"
