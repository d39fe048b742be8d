"""In-process caching for resolved calendar windows."""
