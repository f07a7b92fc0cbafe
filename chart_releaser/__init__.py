"""
Chart releaser: publish packaged Helm charts as GitHub releases and keep a
chart repository index up to date.
"""

__version__ = "1.0.0"
