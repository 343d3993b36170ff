"""Pytest integration: fixtures for throwaway servers and replica sets."""
