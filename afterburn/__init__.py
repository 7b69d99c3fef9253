"""Afterburn: crawl a site, synthesize user workflows and execute them to find defects."""

__version__ = "0.1.0"
