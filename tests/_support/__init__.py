"""
Test support utilities for tdsbridge tests.

Helpers that are shared by several test modules but are not fixtures
themselves live here (the scripted fake driver, config builders).
"""
