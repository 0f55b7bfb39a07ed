# x402test/x402/__init__.py
"""
x402 Payment Protocol on Solana.

Key components:
- parser: encoding/decoding of challenge, X-PAYMENT and X-PAYMENT-RESPONSE
- instructions: SPL token transfer instruction decoding
- replay: persisted replay protection for payment signatures
- verify: on-chain verification of payment proofs
- payment: client-side transfer construction and proof headers
- client: fluent request driver with payment and expectations
- units: fixed-point token amount conversion
- explorers: block explorer links
- audit: JSON-lines audit trail of payment events
"""
