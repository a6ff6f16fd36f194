"""Layered request/response protocol over a framed byte link: link, application and attribute layers."""

__version__ = "0.1.0"