"""
squigrank test suite

Structure:
- unit/: tests for individual modules (curve math, PPI, crypto, classifier, cache, network, scanner, ranking)
- integration/: end-to-end scan runs against a fake HTTP session (resume, incremental rescans)
- fakes.py: fake requests session, measurement text builders, envelope encryption
"""
