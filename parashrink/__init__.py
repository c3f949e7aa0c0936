"""
Parashrink: parallel test-case reduction orchestrator.

Races external reducer processes against one another, keeping the test
case interesting under an external predicate, until no reducer can make
further progress.
"""

__version__ = "0.1.0"
