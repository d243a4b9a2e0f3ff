"""
Initiatives: the signable documents at the centre of the tracker.

- Every initiative carries a PDF and optionally an image (asset files)
- Organisations backing it are public, signatures are visible to their owner only
- Listed with the latest deadline first
"""
