"""
Shared building blocks: exceptions and time helpers.
"""
