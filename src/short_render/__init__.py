"""Short Render - Automated Short-Form Video Assembly.

Resolves background footage from YouTube, lays narration captions over it,
submits the result to a remote render service and meters every billed
third-party call in a daily usage ledger.
"""

__version__ = "0.1.0"
