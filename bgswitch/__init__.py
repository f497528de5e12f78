"""
Blue/green traffic switch for a stateless service behind a reverse proxy.
"""

VERSION = "0.1.0"
