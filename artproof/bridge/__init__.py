"""Bridge layer between the pipeline and the outside world.

Modules
-------
signer
    The ``Signer`` capability and ``sign_and_submit``.
mirror
    The ``Mirror`` capability and its httpx REST client.
anchor
    Off-chain, content-addressed storage for images and metadata JSON.
crypto_bridge
    Ed25519 keys and signatures via PyNaCl.
simulated
    An in-process ledger (Signer + Mirror + marketplace) for demos and tests.
"""
