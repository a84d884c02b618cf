"""
Vercel Serverless Function Entry Point for the recording backend
"""
import os
import sys

# Add project root to Python path
project_root = os.path.join(os.path.dirname(__file__), '..')
sys.path.insert(0, project_root)

from mangum import Mangum
from src.backend.server import app

# Routes already carry the /api prefix (/api/process-payment, /api/plans),
# so the path is passed through unchanged. Lifespan events don't run in serverless.
handler = Mangum(app, lifespan="off")


def handler_func(event, context):
    """Vercel serverless function handler"""
    return handler(event, context)
