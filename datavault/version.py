"""DataVault Meta information.
   DataVault is an end-to-end encrypted key-value vault on top of
   an untrusted remote key-value store.
"""
__title__ = 'datavault'
__description__ = (
   'End-to-end encrypted key-value vault with signature-derived keys '
   'and X25519 grant-based sharing.'
)
__version__ = '0.1.0'
__copyright__ = 'Copyright (c) 2026 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/datavault'
