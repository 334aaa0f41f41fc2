"""
openbid - English auction engine

A single-item, single-round ascending auction with:
- Minimum-increment bidding and late-bid deadline extension
- Early reclaim of superseded bids
- One-shot owner settlement refunding losing bidders minus a fee
- Hash-chained audit feed and SQLite persistence
"""

__version__ = "0.1.0"
