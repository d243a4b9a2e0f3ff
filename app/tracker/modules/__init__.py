"""
Aggregates live under this package.

Each module owns one aggregate (service.py) and, where it is exposed over
HTTP, its JSON routes (admin.py). Aggregates reach each other only through
the shared `Api`, never by importing a sibling's repository.
"""
