"""
Backend module for MK Volume Bot
Provides the FastAPI purchase recording server
"""
