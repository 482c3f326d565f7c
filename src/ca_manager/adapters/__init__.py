"""Adapters: key generation, X.509 building and the PKCS#7/#8/#10/#12, CRL and key codecs."""
