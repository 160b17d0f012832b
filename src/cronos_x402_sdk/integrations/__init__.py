"""
Web framework integrations.

Each integration needs its framework installed through the matching extra:

    pip install cronos-x402-sdk[fastapi]
"""
