"""
Property-based tests for packet resolution and packet lifting.

Hypothesis strategies assemble random packet streams; the test modules
check boundary, marker and parallel-semantics properties against them in a
fast CI lane and an opt-in nightly lane.
"""
