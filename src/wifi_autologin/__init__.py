"""
Captive portal auto-login: detect portal interception and submit cached credentials.
"""

__version__ = "0.3.0"
