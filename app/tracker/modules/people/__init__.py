"""
People whose signatures a login collects.

A person belongs to exactly one login; lookups by id, slug or name are scoped
to that owner and slugs only need to be unique per owner.
"""
