"""
Bitcoin primitives: transactions, scripts, addresses and signature hashing.
"""
