"""
Bitcoin consensus and policy constants used by the wallet core.

Dust follows Bitcoin Core's GetDustThreshold with the default dust relay fee:
- STANDARD_DUST_LIMIT: dust limit of a P2PKH output (546 sats)
- WITNESS_DUST_LIMIT: dust limit of a P2WPKH output (294 sats)
"""

from __future__ import annotations

# nSequence values (BIP125 / BIP68)
SEQUENCE_FINAL = 0xFFFFFFFF
SEQUENCE_LOCKTIME_NO_RBF = 0xFFFFFFFE
SEQUENCE_RBF_DEFAULT = 0xFFFFFFFD

# Hardened derivation offset (BIP32)
HARDENED_OFFSET = 0x80000000

# Signature hash types
SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_ANYONECANPAY = 0x80

# Dust relay fee in sat/vbyte (Bitcoin Core -dustrelayfee=3000 sat/kvB)
DUST_RELAY_FEE = 3.0
STANDARD_DUST_LIMIT = 546  # satoshis
WITNESS_DUST_LIMIT = 294  # satoshis

# Largest OP_RETURN payload relayed by default
MAX_DATA_SIZE = 80

# Fee defaults in sat/vbyte
DEFAULT_FEE_RATE = 1.0
MIN_RELAY_INCREMENT = 1.0

# Upper bound on fee/size convergence passes in coin selection
MAX_FEE_ITERATIONS = 100

# Default transaction version for new transactions
DEFAULT_TX_VERSION = 2

# Weight units
WITNESS_SCALE_FACTOR = 4
# Worst-case DER signature with sighash byte appended
MAX_SIGNATURE_SIZE = 72
COMPRESSED_PUBKEY_SIZE = 33

# BIP44/49/84 purpose numbers
BIP44_PURPOSE = 44
BIP49_PURPOSE = 49
BIP84_PURPOSE = 84
