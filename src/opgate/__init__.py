"""opgate — a delegated, signature-gated operation pipeline.

Accounts authorize operation descriptors by signature; a single trusted
orchestrator validates them against each account's policy store,
executes them atomically and settles gas with optional sponsors.
"""
