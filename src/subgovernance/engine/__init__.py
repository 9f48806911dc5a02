"""Voting engine — policy decisions and the execution gate."""
