"""
GiftBridge

Syncs completed donations from FundraiseUp into Blackbaud Raiser's Edge NXT:
- finds or creates the donor constituent by email
- creates exactly one gift per donation (lookup-id based dedup)
- links recurring installments to their series anchor gift
- resumes interrupted batches from a persisted checkpoint
"""

__version__ = "0.1.0"
