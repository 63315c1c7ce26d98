"""Test package for the tone detection drill.

Core tests drive the session with a fake clock and a muted sink. The smoke
tests run the pygame shell headlessly using SDL's dummy drivers. To run
these tests, execute ``pytest`` from the project root.
"""
