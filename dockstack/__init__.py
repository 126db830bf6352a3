"""dockstack - Compose template assembly and database backup chains."""

__version__ = "0.4.0"
