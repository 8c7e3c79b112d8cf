"""
Test suite for the parts catalog admin API.
"""
