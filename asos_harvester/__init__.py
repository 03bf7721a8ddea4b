"""Product harvester for ASOS listing and detail pages."""

__version__ = "0.1.0"
