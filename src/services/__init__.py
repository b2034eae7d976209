"""
Services package - Process-level services for Coldkeep.

Contains:
- logging: Console/file logging setup and log retention
"""
