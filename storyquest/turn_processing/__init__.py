"""Turn processing helpers.

This package centralizes candidate validation, repair, and per-action gate checks
so every turn flows through the same pipeline and shows up consistently in logs.
"""
