"""
givecore - coordination layer for a community giving platform.

Two ledger programs (crowdfunding campaigns and shared-resource claims) hold
money and quantities. A best-effort off-chain store holds profiles, chat,
category labels and receipts. This package reads and writes both, derives
display state, and runs the multi-step workflows that span them.
"""

__version__ = "0.1.0"
