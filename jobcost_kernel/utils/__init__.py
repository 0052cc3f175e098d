"""Utility modules for the job-cost kernel."""
