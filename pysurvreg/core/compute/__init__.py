"""
Shared numerical building blocks: timing, numerical defaults, linear algebra.
"""
