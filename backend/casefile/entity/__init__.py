"""Entity resolution package.

Provides pairwise name comparison, candidate clustering, the canonicalizer
used during extraction, and the offline alias grouping pass.
"""
