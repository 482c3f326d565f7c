"""
ca_manager — private X.509 certificate authority manager.

Keeps a CA's root key in a passphrase-protected PKCS#12 keystore and uses
it to take in certificate requests, issue and revoke certificates and
publish CRLs, all persisted in a plain directory layout.

Public operations return Results from the Railway-Oriented Programming
core in ca_manager.domain.result.
"""

__version__ = "0.1.0"
