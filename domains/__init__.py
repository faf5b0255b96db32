"""Domain packages for the file listener."""
