"""
Command modules for the CLI.
"""
