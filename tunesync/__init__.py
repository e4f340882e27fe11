"""Write-behind like synchronization for a music-sharing backend."""

__version__ = "1.0.0"
