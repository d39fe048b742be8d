"""aiohttp HTTP surface for groupcal."""
