"""Packaged relay profiles."""
