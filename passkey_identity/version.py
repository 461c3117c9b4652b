"""Passkey Identity Meta information.
   Passkey Identity derives a deterministic secp256k1 signing identity
   from a passkey credential and keeps it encrypted at rest.
"""
__title__ = 'passkey_identity'
__description__ = (
   'Deterministic secp256k1 signing identity derived from passkey '
   'credentials, with an encrypted local key vault.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 Passkey Identity Authors'
__author__ = 'Passkey Identity Authors'
__author_email__ = 'dev@passkey-identity.invalid'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/passkey-identity/passkey-identity'
