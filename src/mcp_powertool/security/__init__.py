"""Credential storage, OAuth lockfiles and the OAuth callback flow."""

from mcp_powertool.security.credentials import CredentialStore, ServerCredentials, StoredCredentials
from mcp_powertool.security.lockfile import LockfileCoordinator, LockfileData

__all__ = [
    "CredentialStore",
    "LockfileCoordinator",
    "LockfileData",
    "ServerCredentials",
    "StoredCredentials",
]
