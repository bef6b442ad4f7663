"""
treeserve: directory tree file server over HTTP(S)
Built with FastAPI + Uvicorn
"""

__version__ = "1.0.0"
__author__ = "treeserve"
__description__ = "Browse, upload and download a directory tree over HTTP(S)"
